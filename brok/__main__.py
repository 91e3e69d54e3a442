from brok.cli import run

run()
