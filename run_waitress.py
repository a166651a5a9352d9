# run_waitress.py
# Sirve la app Flask con Waitress (producción / Windows).
import os

from waitress import serve

from photoai import create_app

if __name__ == "__main__":
    application = create_app()
    listen = os.getenv("LISTEN", "127.0.0.1:8000")
    print(f"[Waitress] Sirviendo en http://{listen}")
    serve(application, listen=listen, threads=int(os.getenv("WAITRESS_THREADS", "8")))
