#!/usr/bin/env python3
"""
Create all tables in DATABASE_URL.
Run from the project root: python -m scripts.init_db
"""
import os
import sys

# project root on PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from thumbgen.db.init_db import create_all
from thumbgen.db.session import engine


def main():
    create_all(engine)
    print(f"Tables created in {engine.url.render_as_string(hide_password=True)}")


if __name__ == "__main__":
    main()
