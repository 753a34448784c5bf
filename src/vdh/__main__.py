# src/vdh/__main__.py

from .cli.main import app

app(prog_name="vdh")
