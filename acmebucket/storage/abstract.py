#!/usr/bin/env python
# -*- coding: utf-8 -*-

# abstract - abstract base class for storage backends
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE


class AbstractStorage:
    def __init__(self, config):
        self.config = config
        self.bucket = config.get("bucket")

    # @brief read a whole object
    # @return the object data as bytes
    # @exception NotFoundError if the object does not exist, StorageError on any other failure
    def read(self, name):
        raise NotImplementedError

    # @brief write (and overwrite) a whole object
    # @param private True if the object holds private key material
    # @exception StorageError on failure
    def write(self, name, data, private=False):
        raise NotImplementedError

    # @brief human readable location of an object for log output
    def location(self, name):
        return "{}/{}".format(self.bucket, name)
