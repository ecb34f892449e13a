# src/wmrecorder/__main__.py
from wmrecorder.cli import cli

if __name__ == "__main__":
    cli(prog_name="wmrecorder")
