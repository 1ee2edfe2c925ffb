import sys

from .cli import main

main(["oaf", *sys.argv[1:]])
