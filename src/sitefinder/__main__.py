from sitefinder.cli import app

app()
