"""fattable keys: encode and decode partition/sort key strings."""

from __future__ import annotations

import typer

from fattable.cli._output import print_object
from fattable.keys import KeyEncoder

app = typer.Typer(no_args_is_help=True)


@app.command(name="encode")
def encode_cmd(text: str = typer.Argument(..., help="Raw key text")) -> None:
    """Print the backend-safe form of a key."""
    from fattable.cli import state

    encoded = KeyEncoder().encode(text)
    if state.json_output:
        print_object({"input": text, "encoded": encoded}, json_mode=True)
    else:
        print(encoded)


@app.command(name="decode")
def decode_cmd(text: str = typer.Argument(..., help="Stored key text")) -> None:
    """Print the original form of a stored key."""
    from fattable.cli import state

    decoded = KeyEncoder().decode(text)
    if state.json_output:
        print_object({"input": text, "decoded": decoded}, json_mode=True)
    else:
        print(decoded)
