#!/usr/bin/env python
# -*- coding: utf-8 -*-

# dns.nsupdate - rfc2136 based challenge handler
# Copyright (c) Rudolf Mayerhofer, 2019
# available under the ISC license, see LICENSE

import io
import re

import dns.query
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.tsigkeyring
import dns.update

from acmebucket.modes.dns.abstract import DNSChallengeHandler, QUERY_TIMEOUT, lookup_ip, lookup_zone, \
    txt_record_present
from acmebucket.tools import log, ConfigurationError

DEFAULT_KEY_ALGORITHM = "HMAC-MD5.SIG-ALG.REG.INT"


# @brief read a bind style TSIG key file
# @param key_name the key to use (default: the first key in the file)
# @return keyring and key algorithm
def read_tsigkey(tsig_key_file, key_name=None):
    try:
        with io.open(tsig_key_file) as key_file:
            key_struct = key_file.read()
    except OSError as e:
        raise ConfigurationError("A problem was encountered opening your keyfile '{}': {}".format(tsig_key_file, e))

    if not key_name:
        match = re.search(r"key \"?([^\"{ ]+?)\"? {.*};", key_struct, re.DOTALL)
        if not match:
            raise ConfigurationError("No key definition found in keyfile '{}'".format(tsig_key_file))
        key_name = match.group(1)
    key_block = re.search(r"key \"?%s\"? {(.*?)};" % re.escape(key_name), key_struct, re.DOTALL)
    algorithm = key_block and re.search(r"algorithm ([a-zA-Z0-9_.-]+?);", key_block.group(1))
    secret = key_block and re.search(r"secret \"(.*?)\"", key_block.group(1))
    if not secret:
        raise ConfigurationError("Unable to read key '{}' from keyfile '{}'".format(key_name, tsig_key_file))

    keyring = dns.tsigkeyring.from_text({key_name: secret.group(1)})
    return keyring, algorithm.group(1) if algorithm else DEFAULT_KEY_ALGORITHM


class ChallengeHandler(DNSChallengeHandler):
    def __init__(self, config):
        DNSChallengeHandler.__init__(self, config)
        if config.get("nsupdate_keyfile"):
            self.keyring, self.keyalgorithm = read_tsigkey(config["nsupdate_keyfile"], config.get("nsupdate_keyname"))
        elif config.get("nsupdate_keyname") and config.get("nsupdate_keyvalue"):
            self.keyring = dns.tsigkeyring.from_text({config["nsupdate_keyname"]: config["nsupdate_keyvalue"]})
            self.keyalgorithm = config.get("nsupdate_keyalgorithm", DEFAULT_KEY_ALGORITHM)
        else:
            raise ConfigurationError("nsupdate requires nsupdate_keyfile or nsupdate_keyname and nsupdate_keyvalue")
        self.nsupdate_server = config.get("nsupdate_server")
        self.nsupdate_verify = str(config.get("nsupdate_verify", "true")).lower() == "true"
        self._primary_verified = False

    # @brief zone of a record and the ip of the server accepting updates for it
    def _update_target(self, name):
        if self.nsupdate_server:
            serverip = lookup_ip(self.nsupdate_server)
            zone, _ = lookup_zone(name, serverip)
        else:
            zone, primary = lookup_zone(name)
            serverip = lookup_ip(primary)
        return zone, serverip

    def _send_update(self, name, change, description):
        zone, serverip = self._update_target(name)
        update = dns.update.Update(zone, keyring=self.keyring, keyalgorithm=self.keyalgorithm)
        change(update)
        log("{} (via {})".format(description, serverip))
        dns.query.tcp(update, serverip, timeout=QUERY_TIMEOUT)

    def add_dns_record(self, domain, txtvalue):
        self._send_update(domain, lambda u: u.add(domain, self.dns_ttl, dns.rdatatype.TXT, txtvalue),
                          'Adding \'{} {} IN TXT "{}"\''.format(domain, self.dns_ttl, txtvalue))

    def remove_dns_record(self, domain, txtvalue):
        rdata = dns.rdata.from_text(dns.rdataclass.IN, dns.rdatatype.TXT, txtvalue)
        self._send_update(domain, lambda u: u.delete(domain, rdata),
                          'Deleting \'{} IN TXT "{}"\''.format(domain, txtvalue))

    def verify_dns_record(self, domain, txtvalue):
        # the primary has to serve the record before any other check makes sense (skipped for full NS checks)
        if self.nsupdate_verify and not self.dns_verify_all_ns and not self._primary_verified:
            _, serverip = self._update_target(domain)
            if not txt_record_present(domain, txtvalue, serverip, use_tcp=True):
                return False
            log('Verified \'{} IN TXT "{}"\' on {}'.format(domain, txtvalue, serverip))
            self._primary_verified = True
        return DNSChallengeHandler.verify_dns_record(self, domain, txtvalue)
