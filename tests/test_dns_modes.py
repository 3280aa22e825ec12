"""Tests for the dns-01 challenge handlers."""

from unittest import mock

import CloudFlare
import pytest

from acmebucket import tools
from acmebucket.modes import challenge_handler
from acmebucket.modes.dns import cloudflare, nsupdate
from acmebucket.modes.dns import abstract
from acmebucket.modes.dns.abstract import DNSChallengeHandler
from acmebucket.tools import ConfigurationError


class MemoryHandler(DNSChallengeHandler):
    def __init__(self, config):
        DNSChallengeHandler.__init__(self, config)
        self.records = {}

    def add_dns_record(self, domain, txtvalue):
        self.records[domain] = txtvalue

    def remove_dns_record(self, domain, txtvalue):
        del self.records[domain]


class TestDNSChallengeHandler:
    def test_record_name_and_value(self):
        handler = MemoryHandler({})
        handler.create_challenge("example.com", "thumb", "token")
        assert handler.records == {
            "_acme-challenge.example.com.": tools.bytes_to_base64url(tools.hash_of_str("token.thumb"))
        }
        handler.destroy_challenge("example.com", "thumb", "token")
        assert handler.records == {}

    def test_update_domain_override(self):
        handler = MemoryHandler({"dns_updatedomain": "acme.example.net"})
        handler.create_challenge("example.com", "thumb", "token")
        assert list(handler.records) == ["acme.example.net."]

    def test_start_without_waiting(self):
        handler = MemoryHandler({"dns_verify_waittime": 0})
        handler.create_challenge("example.com", "thumb", "token")
        with mock.patch("acmebucket.modes.dns.abstract.time.sleep") as sleep:
            handler.start_challenge("example.com", "thumb", "token")
        sleep.assert_not_called()

    def test_start_times_out(self):
        handler = MemoryHandler({"dns_verify_failtime": 0, "dns_verify_interval": 0})
        with mock.patch.object(MemoryHandler, "verify_dns_record", return_value=False):
            with pytest.raises(ValueError):
                handler.start_challenge("example.com", "thumb", "token")

    def test_verify_server_lookup(self):
        handler = MemoryHandler({"dns_verify_server": "192.0.2.53", "dns_verify_waittime": 600})
        handler.create_challenge("example.com", "thumb", "token")
        with mock.patch.object(abstract, "txt_record_present", return_value=True) as check:
            assert handler.verify_dns_record("_acme-challenge.example.com.", "value")
        check.assert_called_once_with("_acme-challenge.example.com.", "value", "192.0.2.53")

    def test_verify_all_nameservers(self):
        handler = MemoryHandler({"dns_verify_all_ns": "true"})
        with mock.patch.object(abstract, "lookup_nameserver_ips", return_value={"192.0.2.1", "192.0.2.2"}), \
                mock.patch.object(abstract, "txt_record_present", side_effect=lambda n, v, ip: ip == "192.0.2.1"):
            assert not handler.verify_dns_record("_acme-challenge.example.com.", "value")
        with mock.patch.object(abstract, "lookup_nameserver_ips", return_value={"192.0.2.1", "192.0.2.2"}), \
                mock.patch.object(abstract, "txt_record_present", return_value=True):
            assert handler.verify_dns_record("_acme-challenge.example.com.", "value")

    def test_nameserver_lookup_failure(self, capsys):
        handler = MemoryHandler({"dns_verify_all_ns": "true"})
        with mock.patch.object(abstract, "lookup_nameserver_ips", side_effect=ValueError("No zone SOA")):
            assert not handler.verify_dns_record("_acme-challenge.example.com.", "value")
        assert "No zone SOA" in capsys.readouterr().err

    def test_lookup_ip_literal(self):
        assert abstract.lookup_ip(" 2001:db8::1 ") == "2001:db8::1"

    def test_challenge_type(self):
        assert MemoryHandler({}).get_challenge_type() == "dns-01"


class TestCloudflare:
    @pytest.fixture()
    def cf(self):
        with mock.patch.object(cloudflare.CloudFlare, "CloudFlare") as client:
            yield client.return_value

    def test_base_domain_name_guesses(self):
        assert cloudflare.base_domain_name_guesses("_acme-challenge.www.example.com") == [
            "_acme-challenge.www.example.com", "www.example.com", "example.com", "com"]

    def test_token_authentication(self, cf):
        handler = cloudflare.ChallengeHandler({"cloudflare_api_token": "secret"})
        cloudflare.CloudFlare.CloudFlare.assert_called_once_with(token="secret")
        assert handler.dns_ttl == cloudflare.DEFAULT_TTL

    def test_global_key_authentication(self, cf):
        cloudflare.ChallengeHandler({"cloudflare_email": "admin@example.com", "cloudflare_api_key": "key"})
        cloudflare.CloudFlare.CloudFlare.assert_called_once_with("admin@example.com", "key")

    def test_missing_credentials(self, cf):
        with pytest.raises(ConfigurationError):
            cloudflare.ChallengeHandler({"cloudflare_email": "admin@example.com"})

    def test_factory(self, cf):
        handler = challenge_handler({"mode": "dns.cloudflare", "cloudflare_api_token": "secret"})
        assert isinstance(handler, cloudflare.ChallengeHandler)

    def test_add_and_remove_record(self, cf):
        cf.zones.get.side_effect = [[], [{"id": "zone-1"}]]
        cf.zones.dns_records.post.return_value = {"id": "record-1"}
        handler = cloudflare.ChallengeHandler({"cloudflare_api_token": "secret"})

        handler.add_dns_record("_acme-challenge.example.com.", "value")
        cf.zones.dns_records.post.assert_called_once_with("zone-1", data={
            "type": "TXT", "name": "_acme-challenge.example.com", "content": "value", "ttl": 120})

        handler.remove_dns_record("_acme-challenge.example.com.", "value")
        cf.zones.dns_records.delete.assert_called_once_with("zone-1", "record-1")
        cf.zones.dns_records.get.assert_not_called()

    def test_configured_zone(self, cf):
        handler = cloudflare.ChallengeHandler({"cloudflare_api_token": "secret", "cloudflare_zone_id": "zone-9"})
        handler.add_dns_record("_acme-challenge.example.com.", "value")
        cf.zones.get.assert_not_called()
        assert cf.zones.dns_records.post.call_args[0][0] == "zone-9"

    def test_remove_looks_up_unknown_record(self, cf):
        cf.zones.dns_records.get.return_value = [{"id": "record-7"}]
        handler = cloudflare.ChallengeHandler({"cloudflare_api_token": "secret", "cloudflare_zone_id": "zone-9"})
        handler.remove_dns_record("_acme-challenge.example.com.", "value")
        cf.zones.dns_records.delete.assert_called_once_with("zone-9", "record-7")

    def test_invalid_credentials(self, cf):
        cf.zones.get.side_effect = CloudFlare.exceptions.CloudFlareAPIError(9109, "Invalid access token", "")
        handler = cloudflare.ChallengeHandler({"cloudflare_api_token": "wrong"})
        with pytest.raises(ValueError) as excinfo:
            handler.add_dns_record("_acme-challenge.example.com.", "value")
        assert "credentials" in str(excinfo.value)
        cf.zones.dns_records.post.assert_not_called()

    def test_missing_permission(self, cf):
        cf.zones.dns_records.post.side_effect = CloudFlare.exceptions.CloudFlareAPIError(1009, "Forbidden", "")
        handler = cloudflare.ChallengeHandler({"cloudflare_api_token": "secret", "cloudflare_zone_id": "zone-9"})
        with pytest.raises(ValueError) as excinfo:
            handler.add_dns_record("_acme-challenge.example.com.", "value")
        assert "Zone:DNS:Edit" in str(excinfo.value)

    def test_unknown_zone(self, cf):
        cf.zones.get.return_value = []
        handler = cloudflare.ChallengeHandler({"cloudflare_api_token": "secret"})
        with pytest.raises(ValueError):
            handler.add_dns_record("_acme-challenge.example.com.", "value")


class TestNsupdate:
    KEYFILE = 'key "acme-key" {\n\talgorithm hmac-sha256;\n\tsecret "c2VjcmV0c2VjcmV0c2VjcmV0";\n};\n'

    def test_read_tsigkey(self, tmp_path):
        path = tmp_path / "acme.key"
        path.write_text(self.KEYFILE)
        keyring, algorithm = nsupdate.read_tsigkey(str(path))
        assert algorithm == "hmac-sha256"
        assert len(keyring) == 1

    def test_read_missing_tsigkey(self, tmp_path):
        with pytest.raises(ConfigurationError):
            nsupdate.read_tsigkey(str(tmp_path / "missing.key"))

    def test_read_garbled_tsigkey(self, tmp_path):
        path = tmp_path / "acme.key"
        path.write_text("not a key file")
        with pytest.raises(ConfigurationError):
            nsupdate.read_tsigkey(str(path))

    def test_missing_key(self):
        with pytest.raises(ConfigurationError):
            nsupdate.ChallengeHandler({"nsupdate_keyname": "acme-key"})

    def test_add_record(self):
        handler = nsupdate.ChallengeHandler({"nsupdate_keyname": "acme-key",
                                             "nsupdate_keyvalue": "c2VjcmV0c2VjcmV0c2VjcmV0",
                                             "nsupdate_keyalgorithm": "hmac-sha256"})
        with mock.patch.object(handler, "_update_target",
                               return_value=("example.com.", "192.0.2.53")), \
                mock.patch.object(nsupdate.dns.query, "tcp") as tcp:
            handler.add_dns_record("_acme-challenge.example.com.", "value")
        update, nameserverip = tcp.call_args[0]
        assert nameserverip == "192.0.2.53"
        assert "_acme-challenge.example.com. 60 IN TXT \"value\"" in update.to_text()
