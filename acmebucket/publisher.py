#!/usr/bin/env python
# -*- coding: utf-8 -*-

# publisher - write certificate artifacts to storage
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

from acmebucket.tools import log

CERT_FILE = "cert.pem"
FULLCHAIN_FILE = "fullchain.pem"
KEY_FILE = "privkey.pem"


# @brief write a certificate bundle to storage
# @note each object is written on its own; a failure leaves earlier objects updated.
#       fullchain.pem currently holds the same bytes as cert.pem (the whole chain).
def publish_bundle(bundle, storage):
    artifacts = [
        (CERT_FILE, bundle.certificate, False),
        (FULLCHAIN_FILE, bundle.certificate, False),
        (KEY_FILE, bundle.private_key, True),
    ]
    for name, data, private in artifacts:
        storage.write(name, data, private=private)
    log("Published certificate for {} to {}".format(bundle.domains, storage.location("")))
