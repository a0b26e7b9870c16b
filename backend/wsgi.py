# backend/wsgi.py
from pharmacy_pos import create_app

app = create_app()
