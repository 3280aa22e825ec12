#!/usr/bin/env python
# -*- coding: utf-8 -*-

# acmebucket - various support functions
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import base64
import datetime
import os
import sys
import traceback
from urllib.request import urlopen, Request

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa, ec, padding
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.utils import int_to_bytes
from cryptography.x509.oid import NameOID, ExtensionOID

# Log output replacements (e.g. IDNA domain -> "IDNA [unicode]")
LOG_REPLACEMENTS = {}

# EC key sizes -> curve, JWS algorithm, JWK curve name and hash
EC_CURVES = {
    256: (ec.SECP256R1, "ES256", "P-256", hashes.SHA256),
    384: (ec.SECP384R1, "ES384", "P-384", hashes.SHA384),
    521: (ec.SECP521R1, "ES512", "P-521", hashes.SHA512),
}


class AcmeBucketError(Exception):
    pass


class InvalidCertificateError(AcmeBucketError):
    pass


class ConfigurationError(AcmeBucketError):
    pass


class StorageError(AcmeBucketError):
    pass


class NotFoundError(StorageError):
    pass


class CorruptDataError(AcmeBucketError):
    pass


class RegistrationError(AcmeBucketError):
    pass


class IssuanceError(AcmeBucketError):
    pass


# @brief a simple, portable indent function
def indent(text, spaces=0):
    ind = ' ' * spaces
    return os.linesep.join(ind + line for line in text.splitlines())


# @brief wrapper for log output
def log(msg, exc=None, error=False, warning=False):
    if error:
        prefix = "Error: "
    elif warning:
        prefix = "Warning: "
    else:
        prefix = ""

    for key, value in LOG_REPLACEMENTS.items():
        msg = msg.replace(key, value)

    output = prefix + msg
    if exc:
        formatted_exc = traceback.format_exception(type(exc), exc, exc.__traceback__)
        output += os.linesep + indent(''.join(formatted_exc), len(prefix))

    if error or warning:
        sys.stderr.write(output + os.linesep)
        sys.stderr.flush()  # force flush buffers after message was written for immediate display
    else:
        sys.stdout.write(output + os.linesep)
        sys.stdout.flush()  # force flush buffers after message was written for immediate display


# @brief wrapper for downloading an url
def get_url(url, data=None, headers=None):
    return urlopen(Request(url, data=data, headers={} if headers is None else headers))


# @brief check whether existing certificate is still valid or expiring soon
# @param cert the certificate
# @param ttl_days the minimum amount of days for which the certificate must be valid
# @return True if certificate is still valid for at least ttl_days, False otherwise
def is_cert_valid(cert, ttl_days):
    now = datetime.datetime.now(datetime.timezone.utc)
    if cert.not_valid_before_utc > now:
        raise InvalidCertificateError("Certificate seems to be from the future")

    expiry_limit = now + datetime.timedelta(days=ttl_days)
    if cert.not_valid_after_utc < expiry_limit:
        return False

    return True


# @brief create a certificate signing request
# @param names list of domain names the certificate should be valid for
# @param key the key to use with the certificate
# @return the CSR
def new_cert_request(names, key):
    primary_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, names[0])])
    all_names = x509.SubjectAlternativeName([x509.DNSName(name) for name in names])
    req = x509.CertificateSigningRequestBuilder()
    req = req.subject_name(primary_name)
    req = req.add_extension(all_names, critical=False)
    return req.sign(key, hashes.SHA256())


# @brief generate a new account key (EC P-256)
def new_account_key():
    return new_ssl_key('ec', 256)


# @brief generate a new ssl key
# @param key_algo 'rsa' (default) or 'ec'
# @param key_size RSA modulus length or EC curve size
def new_ssl_key(key_algo=None, key_size=None):
    key_algo = (key_algo or 'rsa').lower()
    if key_algo == 'rsa':
        return rsa.generate_private_key(public_exponent=65537, key_size=key_size or 2048)
    if key_algo == 'ec':
        if (key_size or 256) not in EC_CURVES:
            raise ValueError("Unsupported EC curve size parameter: {}".format(key_size))
        return ec.generate_private_key(curve=EC_CURVES[key_size or 256][0]())
    raise ValueError("Unsupported key algorithm: {}".format(key_algo))


# @brief serialize a private key to PEM bytes
# @param key the private key
# @param traditional use the TraditionalOpenSSL format ("EC PRIVATE KEY"/"RSA PRIVATE KEY") instead of PKCS8
def convert_key_to_pem_bytes(key, traditional=False):
    if traditional:
        key_format = serialization.PrivateFormat.TraditionalOpenSSL
    else:
        key_format = serialization.PrivateFormat.PKCS8
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=key_format,
        encryption_algorithm=serialization.NoEncryption(),
    )


# @brief load a private key from PEM bytes
def convert_pem_bytes_to_key(data):
    return serialization.load_pem_private_key(data, None)


# @brief common name of a certificate subject, None if the subject has none
def _get_cert_common_name(cert):
    attributes = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    return attributes[0].value if attributes else None


# @brief determine all domains on a given certificate (CN, if any, and dNSName SANs)
def get_cert_domains(cert):
    domains = set()
    common_name = _get_cert_common_name(cert)
    if common_name:
        domains.add(common_name)
    try:
        san_cert = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        domains.update(san_cert.value.get_values_for_type(x509.DNSName))
    except x509.ExtensionNotFound:
        pass
    # Convert IDNA domain to correct representation and return the list
    return [x for x, _ in idna_convert(sorted(domains))]


# @brief describe a certificate by its cn (or its SANs if it has no cn)
def get_cert_cn(cert):
    common_name = _get_cert_common_name(cert)
    if common_name:
        return "CN={}".format(common_name)
    return "SAN={}".format(",".join(get_cert_domains(cert)))


# @brief determine certificate end of validity
def get_cert_valid_until(cert):
    return cert.not_valid_after_utc


# @brief load a PEM certificate from str (the first one if given a chain)
def convert_pem_str_to_cert(certdata):
    return x509.load_pem_x509_certificate(certdata.encode('utf8'))


# @brief serialize cert/csr to DER bytes
def convert_cert_to_der_bytes(data):
    return data.public_bytes(serialization.Encoding.DER)


# @brief determine the JWS algorithm and the public JWK of a key (RFC 7518 sections 6.2 and 6.3)
# @return algorithm name, jwk as a dict
def get_key_alg_and_jwk(key):
    numbers = key.public_key().public_numbers()
    if isinstance(key, rsa.RSAPrivateKey):
        return "RS256", {"kty": "RSA",
                         "e": bytes_to_base64url(int_to_bytes(numbers.e)),
                         "n": bytes_to_base64url(int_to_bytes(numbers.n))}
    if isinstance(key, ec.EllipticCurvePrivateKey) and key.curve.key_size in EC_CURVES:
        _, alg, crv, _ = EC_CURVES[key.curve.key_size]
        octets = (key.curve.key_size + 7) // 8
        return alg, {"kty": "EC", "crv": crv,
                     "x": bytes_to_base64url(int_to_bytes(numbers.x, octets)),
                     "y": bytes_to_base64url(int_to_bytes(numbers.y, octets))}
    raise ValueError("Unsupported key: {}".format(key))


# @brief sign string with key
# @return the JWS signature (raw r|s for EC keys, RFC 7518 section 3.4)
def signature_of_str(key, string):
    data = string.encode('utf8')
    if isinstance(key, rsa.RSAPrivateKey):
        return key.sign(data, padding.PKCS1v15(), hashes.SHA256())
    if isinstance(key, ec.EllipticCurvePrivateKey) and key.curve.key_size in EC_CURVES:
        hash_algorithm = EC_CURVES[key.curve.key_size][3]
        octets = (key.curve.key_size + 7) // 8
        r, s = decode_dss_signature(key.sign(data, ec.ECDSA(hash_algorithm())))
        return int_to_bytes(r, octets) + int_to_bytes(s, octets)
    raise ValueError("Unsupported signature key: {}".format(key))


# @brief hash a string
def hash_of_str(string):
    digest = hashes.Hash(hashes.SHA256())
    digest.update(string.encode('utf8'))
    return digest.finalize()


# @brief helper function to base64 encode for JSON objects
# @param b the byte-string to encode
# @return the encoded string
def bytes_to_base64url(b):
    return base64.urlsafe_b64encode(b).decode('utf8').replace("=", "")


# @brief convert domain list to idna representation (if applicable)
# @return list of (idna name, name as given) tuples
def idna_convert(domainlist):
    domaintranslation = list()
    for domain in domainlist:
        if all(ord(c) < 128 for c in domain):
            domaintranslation.append((domain, domain))
            continue
        wildcard, name = ("*.", domain[2:]) if domain.startswith('*.') else ("", domain)
        try:
            domaintranslation.append((wildcard + name.encode('idna').decode('ascii'), domain))
        except UnicodeError as e:
            log("Unicode domain {} could not be translated to IDNA: {}".format(domain, e), error=True)
            domaintranslation.append((domain, domain))
    return domaintranslation
