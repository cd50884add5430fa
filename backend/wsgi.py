# backend/wsgi.py
from packtrack import create_app

app = create_app()
