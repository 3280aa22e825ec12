#!/usr/bin/env python
# -*- coding: utf-8 -*-

# issuer - obtain certificates from the authority
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

from acmebucket import tools
from acmebucket.authority import authority
from acmebucket.tools import log, IssuanceError

# Leaf certificates always use an RSA-2048 key, independent of the account key
CERT_KEY_ALGORITHM = "rsa"
CERT_KEY_LENGTH = 2048


class CertificateBundle:
    def __init__(self, domains, certificate, private_key):
        self.domains = list(domains)
        self.certificate = certificate
        self.private_key = private_key

    def __repr__(self):
        return "CertificateBundle({})".format(self.domains)


# @brief fetch a new certificate for all given domains
# @param account the registered account
# @param domains list of domains, the first one becomes the CN
# @param settings the authority configuration options
# @param handler the dns-01 challenge handler used for every domain
# @param authority_factory function creating the authority client
# @return the certificate bundle
# @exception IssuanceError if any domain fails to validate or the authority rejects the order
def obtain_certificate(account, domains, settings, handler, authority_factory=authority):
    log("Getting certificate for {}".format(domains))
    try:
        acme = authority_factory(dict(settings, email=account.email), account.key, account.url)

        key = tools.new_ssl_key(CERT_KEY_ALGORITHM, CERT_KEY_LENGTH)
        cr = tools.new_cert_request(domains, key)
        chain = acme.get_crt_from_csr(cr, domains, {domain: handler for domain in domains})

        crt = tools.convert_pem_str_to_cert(chain)
        missing = set(domains) - set(tools.get_cert_domains(crt))
        if missing:
            raise IssuanceError("Issued certificate {} does not cover {}".format(tools.get_cert_cn(crt),
                                                                                  sorted(missing)))
    except IssuanceError:
        raise
    except Exception as e:
        # challenge handlers, the transport and certificate parsing raise their own errors, all of them fail the order
        raise IssuanceError("Certificate issuance for {} failed: {}".format(domains, e)) from e

    log("Certificate '{}' issued and valid until {}".format(tools.get_cert_cn(crt), tools.get_cert_valid_until(crt)))
    return CertificateBundle(domains, chain.encode('utf-8'), tools.convert_key_to_pem_bytes(key))
