#!/usr/bin/env python
# -*- coding: utf-8 -*-

# account - ACME account storage and provisioning
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import json

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import ec

from acmebucket import tools
from acmebucket.authority import authority
from acmebucket.tools import log, CorruptDataError, RegistrationError

PRIVATE_KEY_FILE = "acme_user_privkey.pem"
REGISTRATION_FILE = "acme_user_registration.json"


class Account:
    """An ACME account: contact email, EC P-256 key and the registration the key produced.

    ``registration`` is ``None`` until the account has been registered, afterwards a dict
    holding the account url (``uri``) and the account object returned by the authority
    (``body``). Accounts are not modified after registration, see :meth:`registered`.
    """

    def __init__(self, email, key, registration=None):
        self.email = email
        self.key = key
        self.registration = registration

    @property
    def url(self):
        return self.registration["uri"] if self.registration else None

    def registered(self, registration):
        return Account(self.email, self.key, registration)

    def __eq__(self, other):
        if not isinstance(other, Account):
            return NotImplemented
        return self.email == other.email and self.registration == other.registration and \
            tools.convert_key_to_pem_bytes(self.key) == tools.convert_key_to_pem_bytes(other.key)

    def __repr__(self):
        return "Account({!r}, {})".format(self.email, self.url or "unregistered")


# @brief extract the contact email from a registration resource
def _registration_email(registration):
    for contact in registration.get("body", {}).get("contact", []):
        if contact.startswith("mailto:"):
            return contact[len("mailto:"):]
    return None


# @brief load the account from storage
# @param storage the storage backend
# @param fallback_email email to use if the registration carries no contact
# @return the account
# @exception NotFoundError if the key or the registration object is missing
# @exception CorruptDataError if either object cannot be parsed
def load_account(storage, fallback_email=None):
    key_data = storage.read(PRIVATE_KEY_FILE)

    try:
        key = tools.convert_pem_bytes_to_key(key_data)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CorruptDataError("Invalid account key in {}: {}".format(storage.location(PRIVATE_KEY_FILE), e)) from e
    if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(key.curve, ec.SECP256R1):
        raise CorruptDataError("Account key in {} is not an EC P-256 key".format(storage.location(PRIVATE_KEY_FILE)))

    registration_data = storage.read(REGISTRATION_FILE)

    try:
        registration = json.loads(registration_data.decode('utf-8'))
    except ValueError as e:
        raise CorruptDataError("Invalid account registration in {}: {}".format(
            storage.location(REGISTRATION_FILE), e)) from e
    if not isinstance(registration, dict) or not registration.get("uri") or \
            not isinstance(registration.get("body", {}), dict):
        raise CorruptDataError("Account registration in {} has no account url".format(
            storage.location(REGISTRATION_FILE)))

    email = _registration_email(registration) or fallback_email
    log("Account {} loaded from {}".format(registration["uri"], storage.location(REGISTRATION_FILE)))
    return Account(email, key, registration)


# @brief save the account to storage, overwriting a previously stored account
# @param account the registered account
# @param storage the storage backend
def save_account(account, storage):
    if not account.registration:
        raise ValueError("Refusing to save unregistered account for {}".format(account.email))
    storage.write(PRIVATE_KEY_FILE, tools.convert_key_to_pem_bytes(account.key, traditional=True), private=True)
    storage.write(REGISTRATION_FILE, json.dumps(account.registration, indent=2, sort_keys=True).encode('utf-8'))


# @brief create a new, unregistered account with a fresh EC P-256 key
def create_account(email):
    log("Creating new account key for {}".format(email))
    return Account(email, tools.new_account_key())


# @brief register an account with the authority
# @param account the unregistered account
# @param settings the authority configuration options
# @param authority_factory function creating the authority client
# @return the registered account
def register_account(account, settings, authority_factory=authority):
    log("Registering account for {} on {}".format(account.email, settings['authority']))
    settings = dict(settings, email=account.email)
    try:
        acme = authority_factory(settings, account.key)
    except ValueError as e:
        raise RegistrationError("Could not connect to {}: {}".format(settings['authority'], e)) from e
    return account.registered(acme.register_account())
