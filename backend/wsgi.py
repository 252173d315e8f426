# backend/wsgi.py
from sportify import create_app

app = create_app()
