import os.path
import re

from setuptools import find_packages, setup

try:
    # Import all script providers so that ENTRYPOINTS gets populated.
    from unitlib.scripts import services  # noqa: F401
    from unitlib.scripts.utils import ENTRYPOINTS
except ImportError:
    # Avoid chicken-and-egg dependency requirements during initial installation.
    # This means you need to re-run setup in order to gain script entrypoints.
    ENTRYPOINTS = []


ROOT = os.path.abspath(os.path.dirname(__file__))

README = os.path.join(ROOT, "README.rst")


def version():
    with open(os.path.join(ROOT, "debian", "changelog")) as log:
        first = next(l for l in log if l.strip())
    return re.split("[()]", first)[1].replace("~", "")


setup(name="unitlib",
      version=version(),
      description="Reconciliation of generated systemd units and lifecycle of package services.",
      long_description=open(README).read(),
      long_description_content_type="text/x-rst",
      platforms=["Linux"],
      python_requires=">=3.6",
      install_requires=["docopt", "jinja2"],
      packages=find_packages(exclude=["tests"]),
      package_data={"unitlib.plumbing": ["templates/*.j2"]},
      entry_points={"console_scripts": ENTRYPOINTS})
