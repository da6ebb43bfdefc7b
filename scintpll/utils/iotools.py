"""**iotools.py**

======  ============================================================================================
file    scintpll/utils/iotools.py
brief   Basic file in/out tools.
date    March 2025
======  ============================================================================================
"""

import os
import hashlib
import yaml

def EnsurePathExists(path: str):
    """
    Make sure directory chosen exists

    Parameters
    ----------
    path : str
        path to check
    """
    os.makedirs(os.path.realpath(path), exist_ok=True)

def ContentHash(obj) -> str:
    """
    Deterministic SHA-256 hash of a YAML-serializable object (key order independent)

    Parameters
    ----------
    obj : dict | list | scalar
        Object to hash

    Returns
    -------
    str
        Hexadecimal digest
    """
    text = yaml.safe_dump(obj, sort_keys=True, default_flow_style=True)
    return hashlib.sha256(text.encode('utf-8')).hexdigest()
