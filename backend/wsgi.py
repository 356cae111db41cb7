# backend/wsgi.py
from symbiotic import create_app

app = create_app()
