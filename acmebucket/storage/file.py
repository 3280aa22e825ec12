#!/usr/bin/env python
# -*- coding: utf-8 -*-

# storage.file - local directory storage backend
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import io
import os
import stat

from acmebucket.storage.abstract import AbstractStorage
from acmebucket.tools import log, NotFoundError, StorageError


class Storage(AbstractStorage):
    def __init__(self, config):
        AbstractStorage.__init__(self, config)
        if not self.bucket:
            raise StorageError("No storage directory given")
        if not os.path.isdir(self.bucket):
            try:
                os.makedirs(self.bucket, int("0700", 8))
            except OSError as e:
                raise StorageError("Could not create storage directory {}: {}".format(self.bucket, e)) from e

    def location(self, name):
        return os.path.join(self.bucket, name)

    def read(self, name):
        path = self.location(name)
        if not os.path.isfile(path):
            raise NotFoundError("File {} does not exist".format(path))
        try:
            with io.open(path, 'rb') as f:
                return f.read()
        except OSError as e:
            raise StorageError("Could not read {}: {}".format(path, e)) from e

    def write(self, name, data, private=False):
        path = self.location(name)
        if os.path.exists(path):
            try:
                os.chmod(path, os.stat(path).st_mode | stat.S_IWRITE)
            except OSError:
                log('Could not make file ({0}) writable'.format(path), warning=True)
        try:
            with io.open(path, 'wb') as f:
                f.write(data)
        except OSError as e:
            raise StorageError("Could not write {}: {}".format(path, e)) from e
        if private:
            try:
                os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
            except OSError:
                log('Could not set file permissions on {0}!'.format(path), warning=True)
        log("Wrote {}".format(path))
