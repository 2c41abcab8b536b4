"""Entry point for python -m santavid"""
from santavid.cli.commands import app

app()
