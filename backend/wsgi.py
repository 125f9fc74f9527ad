# backend/wsgi.py
from consign import create_app

app = create_app()
