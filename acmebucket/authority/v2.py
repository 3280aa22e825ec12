#!/usr/bin/env python
# -*- coding: utf-8 -*-

# acmebucket - acme api v2 functions (implements RFC8555)
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import copy
import json
import re
import time

from acmebucket import tools
from acmebucket.authority.acme import ACMEAuthority as AbstractACMEAuthority
from acmebucket.tools import log, IssuanceError, RegistrationError

# Maximum age for nonce values (Boulder invalidates them after some time, so we use a low value of 2 minutes here)
MAX_NONCE_AGE = 120
# Delay between two status polls of a pending challenge or order, and the maximum number of polls
POLL_INTERVAL = 5
MAX_POLLS = 60


class ACMEAuthority(AbstractACMEAuthority):
    # @brief Init class with config
    # @param config Configuration data
    # @param key Account key data
    # @param account_url url of an already registered account
    def __init__(self, config, key, account_url=None):
        AbstractACMEAuthority.__init__(self, config, key, account_url)
        self.ca = config['authority'].rstrip('/')
        email = config.get('email')
        self.contact = ["mailto:{}".format(email)] if email else None

        self.nonce = None
        self.nonce_time = 0
        code, self.directory, _ = self._request_url(self.ca + '/directory')
        if code >= 400 or not isinstance(self.directory, dict):
            self.directory = {
                "meta": {},
                "newAccount": "{}/acme/new-acct".format(self.ca),
                "newNonce": "{}/acme/new-nonce".format(self.ca),
                "newOrder": "{}/acme/new-order".format(self.ca),
            }
            log("API directory retrieval failed ({}). Guessed necessary values: {}".format(code, self.directory),
                warning=True)

        self.algorithm, jwk = tools.get_key_alg_and_jwk(key)
        self.account_protected = {
            "alg": self.algorithm,
            "jwk": jwk
        }

    # @brief fetch a given url
    # @return status code, body (parsed JSON unless raw_result) and response headers
    def _request_url(self, url, data=None, raw_result=False):
        header = {'Content-Type': 'application/jose+json'}
        if data:
            data = data.encode('utf-8')
        try:
            resp = tools.get_url(url, data, header)
        except IOError as e:
            body = getattr(e, "read", e.__str__)()
            if getattr(body, 'decode', None):
                body = body.decode('utf-8')
            return getattr(e, "code", 999), body, {}

        # Store next Replay-Nonce if it is in the header
        if 'Replay-Nonce' in resp.headers:
            self.nonce = resp.headers['Replay-Nonce']
            self.nonce_time = time.time()

        body = resp.read().decode('utf-8')
        if not raw_result and len(body) > 0:
            try:
                body = json.loads(body)
            except ValueError as e:
                raise ValueError('Could not parse non-raw result (expected JSON)', e)

        return resp.getcode(), body, resp.headers

    # @brief fetch an url with a signed request
    def _request_acme_url(self, url, payload=None, protected=None, raw_result=False):
        if not protected:
            protected = {}

        if payload is not None:
            payload64 = tools.bytes_to_base64url(json.dumps(payload).encode('utf8'))
        else:
            payload64 = ""  # for POST-as-GET

        # Request a new nonce if there is none in cache
        if not self.nonce or time.time() > self.nonce_time + MAX_NONCE_AGE:
            self._request_url(self.directory['newNonce'])
        protected["nonce"] = self.nonce
        # Reset nonce cache as we are using it's current value
        self.nonce = None

        protected["url"] = url
        protected["alg"] = self.algorithm
        if self.account_url and "jwk" not in protected:
            protected["kid"] = self.account_url
        protected64 = tools.bytes_to_base64url(json.dumps(protected).encode('utf8'))
        out = tools.signature_of_str(self.key, '.'.join([protected64, payload64]))
        data = json.dumps({
            "protected": protected64,
            "payload": payload64,
            "signature": tools.bytes_to_base64url(out),
        })
        return self._request_url(url, data, raw_result)

    # @brief send a signed request to authority
    def _request_acme_endpoint(self, request, payload=None, protected=None, raw_result=False):
        return self._request_acme_url(self.directory[request], payload, protected, raw_result)

    # @brief poll an url until the returned object leaves the given states
    def _poll_status(self, url, result, states):
        code = 200
        polls = 0
        while code < 400 and isinstance(result, dict) and result.get('status') in states:
            if polls >= MAX_POLLS:
                raise IssuanceError("Gave up waiting on {} after {} polls: {}".format(url, polls, result))
            time.sleep(POLL_INTERVAL)
            polls += 1
            code, result, _ = self._request_acme_url(url)
        return code, result

    # @brief register an account over ACME (the terms of service are always agreed to)
    # @return the registration resource as a dict with 'uri' and 'body'
    def register_account(self):
        protected = copy.deepcopy(self.account_protected)
        payload = {
            "termsOfServiceAgreed": True,
            "onlyReturnExisting": False,
        }
        if self.contact:
            payload["contact"] = self.contact
        try:
            code, result, headers = self._request_acme_endpoint("newAccount", payload, protected)
        except ValueError as e:
            raise RegistrationError("Error registering account on {}: {}".format(self.ca, e)) from e
        if code >= 400 or not isinstance(result, dict) or result.get('status') != 'valid' \
                or 'Location' not in headers:
            raise RegistrationError("Error registering account: {0} {1}".format(code, result))

        self.account_url = headers['Location']
        if 'termsOfService' in self.directory.get('meta', {}):
            log("ToS at {} have been accepted.".format(self.directory['meta']['termsOfService']))
        log("Account registered and valid on {}.".format(self.ca))
        return {"uri": self.account_url, "body": result}

    # @brief fetch an authorization and pick the challenge to solve for it
    # @return the authorization (with '_domain', '_challenge' and '_token' set) or None if it is already valid
    def _prepare_authorization(self, authorization_url, challenge_handlers):
        code, authorization, _ = self._request_acme_url(authorization_url)
        if code >= 400:
            raise IssuanceError("Error requesting authorization: {0} {1}".format(code, authorization))

        value = authorization['identifier']['value']
        domain = "*.{}".format(value) if authorization.get('wildcard') else value
        authorization['_domain'] = domain
        if authorization.get('status') == 'valid':
            log("{} has already been authorized".format(domain))
            return None
        if domain not in challenge_handlers:
            raise IssuanceError("No challenge handler given for domain: {0}".format(domain))

        ctype = challenge_handlers[domain].get_challenge_type()
        challenge = next((c for c in authorization['challenges'] if c['type'] == ctype), None)
        if challenge is None:
            raise IssuanceError("Error no challenge matching {0} found: {1}".format(ctype, authorization))
        if challenge.get('status') == 'valid':
            log("{} has already been authorized using {}".format(domain, ctype))
            return None

        authorization['_challenge'] = challenge
        authorization['_token'] = re.sub(r"[^A-Za-z0-9_\-]", "_", challenge['token'])
        return authorization

    # @brief tell the authority a challenge is ready and wait for the verdict
    def _answer_challenge(self, authorization, handler, thumbprint):
        domain = authorization['_domain']
        value = authorization['identifier']['value']
        challenge_url = authorization['_challenge']['url']
        log("Starting verification of {}".format(domain))
        handler.start_challenge(value, thumbprint, authorization['_token'])
        try:
            code, status, _ = self._request_acme_url(challenge_url, {})
            code, status = self._poll_status(challenge_url, status, ('pending', 'processing'))
        finally:
            handler.stop_challenge(value, thumbprint, authorization['_token'])
        if code >= 400 or not isinstance(status, dict) or status.get('status') != 'valid':
            raise IssuanceError("{0} challenge did not pass ({1}): {2}".format(domain, code, status))
        log("{0} verified".format(domain))

    # @brief wait for a ready order, submit the csr and wait until the certificate is issued
    # @return the certificate url
    def _finalize_order(self, order_url, csr):
        code, order, _ = self._request_acme_url(order_url)
        code, order = self._poll_status(order_url, order, ('pending',))
        if code >= 400 or order.get('status') not in ('ready', 'processing', 'valid'):
            raise IssuanceError("Order is not ready to be finalized: {0} {1}".format(code, order))

        log("Finalizing certificate")
        if order['status'] == 'ready':
            der = tools.convert_cert_to_der_bytes(csr)
            code, order, _ = self._request_acme_url(order['finalize'], {"csr": tools.bytes_to_base64url(der)})
        code, order = self._poll_status(order_url, order, ('pending', 'processing'))
        if code >= 400 or order.get('status') != 'valid':
            raise IssuanceError("Error finalizing certificate: {0} {1}".format(code, order))
        return order['certificate']

    # @brief function to fetch certificate using ACME
    # @param csr the certificate signing request
    # @param domains list of domains in the certificate, first is CN
    # @param challenge_handlers a dict containing challenge for all given domains
    # @return the certificate chain (leaf first) in PEM format
    # @note all challenges are created before the first one is answered and are destroyed in reverse order,
    #       whatever the outcome
    def get_crt_from_csr(self, csr, domains, challenge_handlers):
        if not self.account_url:
            raise IssuanceError("Account on {} is not registered".format(self.ca))

        jwk = json.dumps(self.account_protected['jwk'], sort_keys=True, separators=(',', ':'))
        thumbprint = tools.bytes_to_base64url(tools.hash_of_str(jwk))

        log("Ordering certificate for {}".format(domains))
        code, order, headers = self._request_acme_endpoint('newOrder', {
            'identifiers': [{'type': 'dns', 'value': domain} for domain in domains],
        })
        if code >= 400 or 'Location' not in headers:
            raise IssuanceError("Error with certificate order: {0} {1}".format(code, order))

        pending = list()
        try:
            for authorization_url in order['authorizations']:
                authorization = self._prepare_authorization(authorization_url, challenge_handlers)
                if authorization is None:
                    continue
                # tracked before creation so a half-created record is cleaned up as well
                pending.append(authorization)
                log("Authorizing {0}".format(authorization['_domain']))
                challenge_handlers[authorization['_domain']].create_challenge(
                    authorization['identifier']['value'], thumbprint, authorization['_token'])

            for authorization in pending:
                self._answer_challenge(authorization, challenge_handlers[authorization['_domain']], thumbprint)
        finally:
            for authorization in reversed(pending):
                try:
                    challenge_handlers[authorization['_domain']].destroy_challenge(
                        authorization['identifier']['value'], thumbprint, authorization['_token'])
                except Exception as e:
                    log('Challenge destruction failed: {}'.format(e), error=True)

        certificate_url = self._finalize_order(headers['Location'], csr)
        log("Certificate ready!")
        code, certificate, _ = self._request_acme_url(certificate_url, raw_result=True)
        if code >= 400:
            raise IssuanceError("Error downloading certificate chain: {0} {1}".format(code, certificate))
        return certificate
