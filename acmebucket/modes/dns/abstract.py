#!/usr/bin/env python
# -*- coding: utf-8 -*-

# dns.abstract - base class for dns-01 challenge handlers
# Copyright (c) Rudolf Mayerhofer, 2018-2019
# available under the ISC license, see LICENSE

import ipaddress
import socket
import time
from datetime import datetime, timedelta

import dns.exception
import dns.message
import dns.name
import dns.query
import dns.rcode
import dns.rdatatype
import dns.resolver

from acmebucket import tools
from acmebucket.tools import log

QUERY_TIMEOUT = 60  # seconds are the maximum for any query (otherwise the DNS server will be considered dead)
LOOKUP_ERRORS = (ValueError, OSError, dns.exception.DNSException)

_ip_cache = {}
_zone_cache = {}
_nameserver_cache = {}


# @brief resolve a nameserver name to an ip (ip addresses are returned as-is)
def lookup_ip(name_or_ip):
    try:
        return str(ipaddress.ip_address(name_or_ip.strip()))
    except ValueError:
        pass
    if name_or_ip not in _ip_cache:
        addresses = socket.getaddrinfo(name_or_ip, 53)
        if not addresses:
            raise ValueError("Could not lookup dns ip for {}".format(name_or_ip))
        _ip_cache[name_or_ip] = addresses[0][4][0]
    return _ip_cache[name_or_ip]


# @brief find the zone a name belongs to by walking up to the first SOA
# @param nameserver ip of the server to ask (default: system resolvers)
# @return zone name and the SOA primary nameserver name
def lookup_zone(name, nameserver=None):
    cache_key = (name, nameserver)
    if cache_key in _zone_cache:
        return _zone_cache[cache_key]

    servers = [nameserver] if nameserver else dns.resolver.get_default_resolver().nameservers
    current = dns.name.from_text(name)
    while current.parent() != dns.name.root:
        soa = _query_soa(current, servers)
        if soa is not None:
            _zone_cache[cache_key] = current.to_text(), soa.mname.to_text()
            return _zone_cache[cache_key]
        current = current.parent()
    raise ValueError('No zone SOA for "{0}"'.format(name))


def _query_soa(name, servers):
    request = dns.message.make_query(name, dns.rdatatype.SOA)
    for server in servers:
        try:
            response = dns.query.udp(request, server, timeout=QUERY_TIMEOUT)
        except dns.exception.Timeout:
            continue
        except dns.exception.DNSException:
            return None
        if response.rcode() != dns.rcode.NOERROR:
            return None
        soa = [item for rrset in response.answer for item in rrset if item.rdtype == dns.rdatatype.SOA]
        return soa[0] if soa else None
    return None


# @brief ips of all nameservers (NS records) of the zone a name belongs to
def lookup_nameserver_ips(name, nameserver=None):
    zone, primary = lookup_zone(name, nameserver)
    if (zone, primary) in _nameserver_cache:
        return _nameserver_cache[(zone, primary)]

    request = dns.message.make_query(zone, dns.rdatatype.NS)
    response = dns.query.udp(request, nameserver or lookup_ip(primary), timeout=QUERY_TIMEOUT)
    if response.rcode() != dns.rcode.NOERROR:
        return set()
    ips = {lookup_ip(item.to_text()) for rrset in response.answer for item in rrset
           if item.rdtype == dns.rdatatype.NS}
    _nameserver_cache[(zone, primary)] = ips
    return ips


# @brief ask one server whether a TXT record with the given value exists
def txt_record_present(name, txtvalue, nameserverip, use_tcp=False):
    request = dns.message.make_query(name, dns.rdatatype.TXT)
    query = dns.query.tcp if use_tcp else dns.query.udp
    try:
        response = query(request, nameserverip, timeout=QUERY_TIMEOUT)
    except dns.exception.DNSException:
        return False
    return any(item.to_text().strip('"') == txtvalue for rrset in response.answer for item in rrset)


class DNSChallengeHandler:
    """Publishes the TXT record of a dns-01 challenge and waits until resolvers can see it.

    Subclasses talk to the DNS provider through add_dns_record/remove_dns_record.
    A record counts as visible once it is found on every nameserver of its zone
    (dns_verify_all_ns), on dns_verify_server, or once dns_verify_waittime has
    passed since it was added.
    """

    @staticmethod
    def get_challenge_type():
        return "dns-01"

    # @brief TXT record content for a challenge (base64url SHA-256 of the key authorization)
    @staticmethod
    def txt_value(thumbprint, token):
        return tools.bytes_to_base64url(tools.hash_of_str("{0}.{1}".format(token, thumbprint)))

    def __init__(self, config):
        self.config = config
        self.dns_updatedomain = config.get("dns_updatedomain")
        self.dns_ttl = int(config.get("dns_ttl", 60))
        self.dns_verify_waittime = int(config.get("dns_verify_waittime", 2 * self.dns_ttl))
        self.dns_verify_failtime = int(config.get("dns_verify_failtime", self.dns_verify_waittime + 1))
        self.dns_verify_interval = int(config.get("dns_verify_interval", 10))
        self.dns_verify_all_ns = str(config.get("dns_verify_all_ns")).lower() == "true"
        self.dns_verify_server = config.get("dns_verify_server")

        # record name -> time after which the record is assumed to be propagated
        self._ready_at = {}

    # @brief absolute name of the TXT record for a domain
    def record_name(self, domain):
        name = self.dns_updatedomain or "_acme-challenge.{0}".format(domain)
        return dns.name.from_text(name).to_text()

    def create_challenge(self, domain, thumbprint, token):
        name = self.record_name(domain)
        self.add_dns_record(name, self.txt_value(thumbprint, token))
        self._ready_at[name] = datetime.now() + timedelta(seconds=self.dns_verify_waittime)

    def destroy_challenge(self, domain, thumbprint, token):
        name = self.record_name(domain)
        self._ready_at.pop(name, None)
        self.remove_dns_record(name, self.txt_value(thumbprint, token))

    def add_dns_record(self, domain, txtvalue):
        raise NotImplementedError

    def remove_dns_record(self, domain, txtvalue):
        raise NotImplementedError

    # @brief block until the TXT record of a challenge is visible
    # @exception ValueError if it is still not visible after dns_verify_failtime seconds
    def start_challenge(self, domain, thumbprint, token):
        name = self.record_name(domain)
        txtvalue = self.txt_value(thumbprint, token)
        give_up = datetime.now() + timedelta(seconds=self.dns_verify_failtime)
        if self.verify_dns_record(name, txtvalue):
            return
        log("Waiting until TXT record '{}' is ready".format(name))
        while datetime.now() < give_up:
            time.sleep(self.dns_verify_interval)
            if self.verify_dns_record(name, txtvalue):
                return
        raise ValueError("TXT record '{}' is not ready after waiting {} seconds".format(name,
                                                                                      self.dns_verify_failtime))

    # The authority has answered the challenge, the record stays until destroy_challenge
    def stop_challenge(self, domain, thumbprint, token):
        pass

    def _visible_on_all_nameservers(self, name, txtvalue):
        try:
            start = lookup_ip(self.dns_verify_server) if self.dns_verify_server else None
            ips = lookup_nameserver_ips(name, start)
        except LOOKUP_ERRORS as e:
            log("NS verification of '{}' failed: {}".format(name, e), warning=True)
            return False
        if ips and all(txt_record_present(name, txtvalue, ip) for ip in ips):
            log("All NS ({}) for '{}' have the correct TXT record".format(','.join(sorted(ips)), name))
            return True
        return False

    def _visible_on_verify_server(self, name, txtvalue):
        try:
            found = txt_record_present(name, txtvalue, lookup_ip(self.dns_verify_server))
        except LOOKUP_ERRORS as e:
            log("Verification of '{}' on {} failed: {}".format(name, self.dns_verify_server, e), warning=True)
            return False
        if found:
            log("DNS server '{}' found correct TXT record for '{}'".format(self.dns_verify_server, name))
        return found

    def verify_dns_record(self, domain, txtvalue):
        if self.dns_verify_all_ns:
            if self._visible_on_all_nameservers(domain, txtvalue):
                return True
        elif self.dns_verify_server:
            if self._visible_on_verify_server(domain, txtvalue):
                return True
        # without a positive lookup the record counts as propagated once the wait time has passed
        return domain in self._ready_at and datetime.now() >= self._ready_at[domain]
