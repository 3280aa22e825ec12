#!/usr/bin/env python
# -*- coding: utf-8 -*-

# storage - durable storage backend package
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import importlib

DEFAULT_STORAGE = "s3"


# @brief create the storage backend for the given settings
# @param settings the runtime configuration options (uses 'storage', 'bucket' and 'region')
def storage(settings):
    backend = settings.get("storage") or DEFAULT_STORAGE
    storage_module = importlib.import_module("acmebucket.storage.{0}".format(backend))
    storage_class = getattr(storage_module, "Storage")
    return storage_class(settings)
