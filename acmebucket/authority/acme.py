#!/usr/bin/env python
# -*- coding: utf-8 -*-

# acmebucket - generic acme api functions
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE


class ACMEAuthority:
    # @brief Init class with config
    # @param config Configuration data
    # @param key Account key data
    # @param account_url url of an already registered account
    def __init__(self, config, key, account_url=None):
        self.key = key
        self.config = config
        self.account_url = account_url

    # @brief register an account over ACME, agreeing to the terms of service
    # @return the registration resource as a dict with 'uri' and 'body'
    def register_account(self):
        raise NotImplementedError

    # @brief function to fetch certificate using ACME
    # @param csr the certificate signing request
    # @param domains list of domains in the certificate, first is CN
    # @param challenge_handlers a dict containing challenge for all given domains
    # @return the certificate chain (leaf first) in PEM format
    def get_crt_from_csr(self, csr, domains, challenge_handlers):
        raise NotImplementedError
