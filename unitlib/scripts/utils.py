"""
Helpers for converting methods into scripts, and filling in arguments from the command line.
"""

from functools import wraps
from inspect import cleandoc, signature
import logging
import sys
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from docopt import docopt

from ..notify import print_coloured, PrintNotifier
from ..plumbing.config import Config
from ..tasks.backend import Backend


DocOptArgs = Dict[str, Union[bool, str, List[str]]]


ENTRYPOINTS: List[str] = []


def _lookup(opts: DocOptArgs, name: str) -> Any:
    for key in (name.upper(), "<{}>".format(name), "--{}".format(name.replace("_", "-"))):
        if key in opts:
            return opts[key]
    raise RuntimeError("Missing argument {!r}".format(name))


def entrypoint(fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator to make an entrypoint out of a generic function.

    This uses `docopt` to parse arguments according to the method docstring, and will be formatted
    with `{script}` set to the script name.  At minimum, it should contain `Usage: {script}`.

    Functions may optionally accept arguments, but they must be annotated with a recognised type in
    order to be filled in.  The following types are fixed and always available:

    - `DocOptArgs` (a `dict` of input parameters parsed from the usage line)
    - `Backend` (built from `Config.from_env`, notifying on standard error)

    Parameters of type `bool`, `str` or `Sequence[str]` are filled in from an input parameter
    matching the variable name, declared either in upper case, surrounded by arrow brackets, or as
    a long option (e.g. `UNIT`, `<unit>` or `--unit`).

    An example function:

        @entrypoint
        def stop(backend: Backend, user: bool, units: Sequence[str]):
            \"""
            Stop the given units.

            Usage: {script} [--user] UNITS...
            \"""
    """
    label = "unitlib-{}-{}".format(fn.__module__.rsplit(".", 1)[-1],
                                   fn.__qualname__).replace("_", "-")

    @wraps(fn)
    def wrap(opts: Optional[DocOptArgs] = None, backend: Optional[Backend] = None):
        extra: Dict[str, Any] = {}
        script = "{} [--debug]".format(label)
        if opts is None:
            doc = cleandoc(fn.__doc__.format(script=script))
            opts = docopt(doc)
        if opts.pop("--debug", False):
            logging.basicConfig(level=logging.DEBUG)
        for param in signature(fn).parameters.values():
            name = param.name
            cls = param.annotation
            if cls is DocOptArgs:
                extra[name] = opts
            elif cls is Backend:
                extra[name] = backend or Backend(Config.from_env(), PrintNotifier())
            elif cls in (bool, str):
                extra[name] = cls(_lookup(opts, name) or (False if cls is bool else ""))
            elif cls in (Sequence[str], List[str]):
                extra[name] = list(_lookup(opts, name) or [])
            else:
                raise RuntimeError("Bad parameter {!r} type {!r}".format(name, cls))
        return fn(**extra)
    wrap.__doc__ = wrap.__doc__.format(script=label)
    # Create a console script line for setup.
    target = "{}:{}".format(fn.__module__, fn.__qualname__)
    ENTRYPOINTS.append("{}={}".format(label, target))
    return wrap


def error(msg: Optional[str] = None, *, exit: Optional[int] = None, colour: Optional[str] = None):
    """
    Print an error message and/or exit.
    """
    if msg:
        colour = colour or ("1" if exit else "3")
        print_coloured(msg, colour)
    if exit is not None:
        sys.exit(exit)
