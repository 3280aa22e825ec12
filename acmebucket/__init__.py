#!/usr/bin/env python
# -*- coding: utf-8 -*-

# Automated Certificate Manager using ACME, DNS validation and bucket storage
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import sys

from acmebucket import configuration, tools
from acmebucket.account import load_account, save_account, create_account, register_account
from acmebucket.authority import authority
from acmebucket.issuer import obtain_certificate
from acmebucket.modes import challenge_handler
from acmebucket.publisher import publish_bundle, CERT_FILE
from acmebucket.storage import storage
from acmebucket.tools import log, LOG_REPLACEMENTS, AcmeBucketError, NotFoundError

START = "Start"
ACCOUNT_RESOLVED = "AccountResolved"
ACCOUNT_REGISTERED = "AccountRegistered"
CERTIFICATE_ISSUED = "CertificateIssued"
ARTIFACTS_PUBLISHED = "ArtifactsPublished"
DONE = "Done"
FAILED = "Failed"

ACCOUNT_FOUND = "found"
ACCOUNT_CREATED = "created"


class Lifecycle:
    """One pass of the account and certificate lifecycle for a configuration.

    Start -> AccountResolved(found|created) -> AccountRegistered -> CertificateIssued
    -> ArtifactsPublished -> Done. The first error moves the run to Failed and is
    re-raised; nothing done before the failure is rolled back.
    """

    def __init__(self, config, bucket=None, handler=None, authority_factory=authority):
        self.config = config
        self.bucket = bucket if bucket is not None else storage(config)
        self.handler = handler
        self.authority_factory = authority_factory

        self.state = START
        self.account_origin = None
        self.reason = None
        self.account = None
        self.bundle = None

    def _transition(self, state):
        log("{} -> {}".format(self.state, state))
        self.state = state

    # @brief check whether the stored certificate can be kept for another run
    def certificate_is_current(self):
        ttl_days = self.config.get('ttl_days', 0)
        if not ttl_days:
            return False
        try:
            cert = tools.convert_pem_str_to_cert(self.bucket.read(CERT_FILE).decode('utf-8'))
        except NotFoundError:
            return False
        except (ValueError, UnicodeDecodeError) as e:
            log("Stored certificate {} is unreadable, renewing: {}".format(self.bucket.location(CERT_FILE), e),
                warning=True)
            return False
        if set(tools.get_cert_domains(cert)) != set(self.config['domainlist']):
            log("Stored certificate {} does not match {}, renewing".format(tools.get_cert_cn(cert),
                                                                           self.config['domainlist']))
            return False
        try:
            if not tools.is_cert_valid(cert, ttl_days):
                return False
        except tools.InvalidCertificateError as e:
            log("Stored certificate {} is not usable, renewing: {}".format(tools.get_cert_cn(cert), e), warning=True)
            return False
        log("Certificate '{}' is valid until {}, no renewal needed".format(tools.get_cert_cn(cert),
                                                                           tools.get_cert_valid_until(cert)))
        return True

    # @brief resolve the account: resume the stored one or create a new one
    def resolve_account(self):
        try:
            self.account = load_account(self.bucket, self.config['email'])
            self.account_origin = ACCOUNT_FOUND
        except NotFoundError:
            log("Account not found in {}, creating new one".format(self.bucket.location("")))
            self.account = create_account(self.config['email'])
            self.account_origin = ACCOUNT_CREATED
        self._transition(ACCOUNT_RESOLVED)

    # @brief register and persist a newly created account, resumed accounts are already registered
    def ensure_registered(self):
        if self.account_origin == ACCOUNT_CREATED:
            self.account = register_account(self.account, self.config, self.authority_factory)
            save_account(self.account, self.bucket)
        self._transition(ACCOUNT_REGISTERED)

    # @brief build the challenge handler from its settings, bad handler settings fail before any network access
    def prepare_handler(self):
        if self.handler is None:
            self.handler = challenge_handler(self.config['handler'])

    def issue(self):
        self.prepare_handler()
        self.bundle = obtain_certificate(self.account, self.config['domainlist'], self.config, self.handler,
                                         self.authority_factory)
        self._transition(CERTIFICATE_ISSUED)

    def publish(self):
        publish_bundle(self.bundle, self.bucket)
        self._transition(ARTIFACTS_PUBLISHED)

    # @brief run the lifecycle once
    # @return the final state
    def run(self):
        try:
            self.prepare_handler()
            if self.certificate_is_current():
                self._transition(DONE)
                return self.state
            self.resolve_account()
            self.ensure_registered()
            self.issue()
            self.publish()
            self._transition(DONE)
        except Exception as e:
            self.reason = e
            self._transition(FAILED)
            raise
        return self.state


def main():
    try:
        config = configuration.load()
    except AcmeBucketError as e:
        log("Invalid configuration: {}".format(e), error=True)
        sys.exit(1)

    # register idna-mapped domains as LOG_REPLACEMENTS for better readability of log output
    LOG_REPLACEMENTS.update({k: "{} [{}]".format(k, v) for k, v in config['domaintranslation'] if k != v})

    try:
        Lifecycle(config).run()
    except AcmeBucketError as e:
        log("Certificate lifecycle failed", e, error=True)
        sys.exit(1)
