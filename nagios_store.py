#!/usr/bin/env python3
"""
Small on-disk key/value store for checks that compare against values
seen on a previous run (counter rates, first-seen timestamps).

Copyright (C) 2024 - GPLv3 License
"""

import dbm
import os
from typing import Dict, List, Optional

from nagios_common import NAGIOS_UNKNOWN, PluginExit

# Files the different dbm backends may create for one database
STORE_SUFFIXES = ('', '.db', '.dir', '.dat', '.bak', '.pag')


class StateStore:
    """dbm backed string store, opened read/write and created if missing"""

    def __init__(self, path: str):
        self.path = path
        self._db = None

    def open(self):
        directory = os.path.dirname(self.path)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            self._db = dbm.open(self.path, 'c', 0o640)
        except dbm.error as e:
            raise PluginExit(NAGIOS_UNKNOWN, f"Cannot open file {self.path} ({e})")
        return self

    def close(self):
        if self._db is not None:
            self._db.close()
            self._db = None

    def __enter__(self) -> "StateStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        try:
            return self._db[key].decode()
        except KeyError:
            return default

    def set(self, key: str, value):
        self._db[key] = str(value)

    def delete(self, key: str):
        del self._db[key]

    def update(self, values: Dict[str, object]):
        for key, value in values.items():
            self.set(key, value)

    def keys(self) -> List[str]:
        return [key.decode() for key in self._db.keys()]

    def items(self) -> Dict[str, str]:
        return {key: self.get(key) for key in self.keys()}

    def __contains__(self, key: str) -> bool:
        return key in self._db


def remove_store(path: str):
    """Delete a store including the side files of the dbm backend"""
    for suffix in STORE_SUFFIXES:
        candidate = path + suffix
        if os.path.isfile(candidate):
            os.remove(candidate)
