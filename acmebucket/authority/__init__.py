#!/usr/bin/env python
# -*- coding: utf-8 -*-

# authority - authority api package
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import importlib

DEFAULT_API = "v2"
LE_PRODUCTION = "https://acme-v02.api.letsencrypt.org"
LE_STAGING = "https://acme-staging-v02.api.letsencrypt.org"


# @brief select the CA base url for a CA environment
# @param production True for the production CA, False for staging
def authority_url(production):
    return LE_PRODUCTION if production else LE_STAGING


# @brief create an authority client bound to an account key
# @param settings the authority configuration options ('authority', 'email', optional 'api')
# @param key the account private key
# @param account_url the registered account url (kid), None if not yet registered
def authority(settings, key, account_url=None):
    authority_module = importlib.import_module("acmebucket.authority.{0}".format(settings.get("api", DEFAULT_API)))
    authority_class = getattr(authority_module, "ACMEAuthority")
    return authority_class(settings, key, account_url)
