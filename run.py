"""
Development Runner
==================
Runs the command-line tool straight from a source checkout.

Why is this file needed?
------------------------
1. It sits outside 'src', so a checkout can be used without installing it.
2. It puts 'src' on 'sys.path' so 'from axispositions...' imports resolve.

Usage:
    $ python run.py -p -e
"""
import os
import sys

current_dir: str = os.path.dirname(os.path.abspath(__file__))
src_path: str = os.path.join(current_dir, 'src')
sys.path.insert(0, src_path)

from axispositions.main import main

if __name__ == "__main__":
    sys.exit(main())
