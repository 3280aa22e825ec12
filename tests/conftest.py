"""Shared fixtures for the acmebucket test suite."""

import datetime
import sys
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

# Make the package importable without installing it
_ROOT = str(Path(__file__).resolve().parent.parent)
if _ROOT not in sys.path:
    sys.path.insert(0, _ROOT)

from acmebucket.authority import LE_STAGING  # noqa: E402
from acmebucket.storage.file import Storage  # noqa: E402
from acmebucket.tools import IssuanceError, RegistrationError  # noqa: E402

EMAIL = "admin@example.com"
DOMAINS = ["example.com", "www.example.com"]
THUMBPRINT = "fake-thumbprint"


def _name(common_name):
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def make_certificate(domains, public_key=None, signing_key=None, issuer=None, days=90, not_before=None,
                     common_name=True):
    """Build a PEM certificate for *domains* (self-signed unless a signing key/issuer is given).

    With ``common_name=False`` the subject is empty and the domains only appear as SANs.
    """
    subject = _name(domains[0]) if common_name else x509.Name([])
    now = datetime.datetime.now(datetime.timezone.utc)
    if signing_key is None:
        signing_key = ec.generate_private_key(ec.SECP256R1())
    if public_key is None:
        public_key = signing_key.public_key()
    builder = x509.CertificateBuilder() \
        .subject_name(subject) \
        .issuer_name(issuer or subject) \
        .public_key(public_key) \
        .serial_number(x509.random_serial_number()) \
        .not_valid_before(not_before or now - datetime.timedelta(days=1)) \
        .not_valid_after(now + datetime.timedelta(days=days)) \
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]), critical=False)
    cert = builder.sign(signing_key, hashes.SHA256())
    return cert.public_bytes(serialization.Encoding.PEM).decode('utf-8')


class FakeCA:
    """Stands in for the ACME authority factory and records what the clients did."""

    def __init__(self):
        self.key = ec.generate_private_key(ec.SECP256R1())
        self.name = _name("Fake ACME Intermediate")
        self.cert_pem = make_certificate(["Fake ACME Intermediate"], signing_key=self.key, days=365)
        self.clients = []
        self.registrations = []
        self.orders = []
        self.invalid_domains = set()
        self.reject_registration = False
        self.common_name = True

    def __call__(self, settings, key, account_url=None):
        client = FakeAuthority(self, settings, key, account_url)
        self.clients.append(client)
        return client

    def issue(self, csr, domains):
        leaf = make_certificate(domains, public_key=csr.public_key(), signing_key=self.key, issuer=self.name,
                                common_name=self.common_name)
        return leaf + self.cert_pem


class FakeAuthority:
    def __init__(self, ca, settings, key, account_url):
        self.ca = ca
        self.settings = settings
        self.key = key
        self.account_url = account_url

    def register_account(self):
        if self.ca.reject_registration:
            raise RegistrationError("Error registering account: 400 invalidContact")
        self.account_url = "https://acme.test/acct/{}".format(len(self.ca.registrations) + 1)
        self.ca.registrations.append(self.account_url)
        return {"uri": self.account_url,
                "body": {"status": "valid", "contact": ["mailto:{}".format(self.settings['email'])]}}

    def get_crt_from_csr(self, csr, domains, challenge_handlers):
        if not self.account_url:
            raise IssuanceError("Account is not registered")
        self.ca.orders.append(list(domains))
        created = []
        try:
            for domain in domains:
                created.append(domain)
                challenge_handlers[domain].create_challenge(domain, THUMBPRINT, "token-" + domain)
            for domain in domains:
                challenge_handlers[domain].start_challenge(domain, THUMBPRINT, "token-" + domain)
                if domain in self.ca.invalid_domains:
                    raise IssuanceError("{} challenge did not pass (400): unauthorized".format(domain))
        finally:
            for domain in reversed(created):
                challenge_handlers[domain].destroy_challenge(domain, THUMBPRINT, "token-" + domain)
        return self.ca.issue(csr, domains)


class RecordingHandler:
    """DNS-01 challenge handler double keeping its TXT records in memory."""

    def __init__(self, fail_on_create=False):
        self.fail_on_create = fail_on_create
        self.records = {}
        self.calls = []

    @staticmethod
    def get_challenge_type():
        return "dns-01"

    def create_challenge(self, domain, thumbprint, token):
        self.calls.append(("create", domain))
        if self.fail_on_create:
            raise ValueError("Error determining zone_id: 9109 Invalid access token")
        self.records[domain] = token

    def start_challenge(self, domain, thumbprint, token):
        self.calls.append(("start", domain))

    def stop_challenge(self, domain, thumbprint, token):
        self.calls.append(("stop", domain))

    def destroy_challenge(self, domain, thumbprint, token):
        self.calls.append(("destroy", domain))
        self.records.pop(domain, None)


@pytest.fixture()
def fake_ca():
    return FakeCA()


@pytest.fixture()
def handler():
    return RecordingHandler()


@pytest.fixture()
def cert_factory():
    return make_certificate


@pytest.fixture()
def bucket(tmp_path):
    """A file storage backend in a fresh temporary directory."""
    return Storage({"bucket": str(tmp_path / "bucket")})


@pytest.fixture()
def config(bucket):
    return {
        "production": False,
        "authority": LE_STAGING,
        "email": EMAIL,
        "domaintranslation": [(d, d) for d in DOMAINS],
        "domainlist": list(DOMAINS),
        "storage": "file",
        "bucket": bucket.bucket,
        "region": "us-east-1",
        "ttl_days": 0,
        "handler": {"mode": "dns.cloudflare", "cloudflare_api_token": "token"},
    }
