from lspbridge.cli import app

app(prog_name="lspbridge")
