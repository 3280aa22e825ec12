#!/usr/bin/env python
# -*- coding: utf-8 -*-

# dns.cloudflare - Cloudflare API based challenge handler
# Copyright (c) Rudolf Mayerhofer, 2019
# available under the ISC license, see LICENSE

import CloudFlare

from acmebucket.modes.dns.abstract import DNSChallengeHandler
from acmebucket.tools import log, ConfigurationError

DEFAULT_TTL = 120


# @brief list progressively less specific names for a domain (zone name candidates)
def base_domain_name_guesses(domain):
    fragments = domain.rstrip('.').split('.')
    return ['.'.join(fragments[i:]) for i in range(0, len(fragments))]


class ChallengeHandler(DNSChallengeHandler):
    def __init__(self, config):
        if "dns_ttl" not in config:
            config = dict(config, dns_ttl=DEFAULT_TTL)
        DNSChallengeHandler.__init__(self, config)
        api_token = config.get("cloudflare_api_token")
        email = config.get("cloudflare_email")
        api_key = config.get("cloudflare_api_key")
        if api_token:
            self.cf = CloudFlare.CloudFlare(token=api_token)
        elif email and api_key:
            # Global API key authentication requires positional arguments (see cloudflare>=2.10.1)
            self.cf = CloudFlare.CloudFlare(email, api_key)
        else:
            raise ConfigurationError("Either cloudflare_api_token or cloudflare_email and cloudflare_api_key "
                                     "are required for the Cloudflare challenge handler")
        self.zone_id = config.get("cloudflare_zone_id")
        self._record_ids = {}

    def _find_zone_id(self, domain):
        if self.zone_id:
            return self.zone_id

        error = None
        for zone_name in base_domain_name_guesses(domain):
            try:
                zones = self.cf.zones.get(params={'name': zone_name, 'per_page': 1})
            except CloudFlare.exceptions.CloudFlareAPIError as e:
                code = int(e)
                if code in (6003, 9103, 9109):
                    raise ValueError("Error determining zone_id: {} {}. Please confirm that you have supplied "
                                     "valid Cloudflare API credentials.".format(code, e))
                error = e
                continue
            if zones:
                log("Found Cloudflare zone {} for {}".format(zone_name, domain))
                self.zone_id = zones[0]['id']
                return self.zone_id
        raise ValueError("Unable to determine zone_id for {} using zone names {}{}".format(
            domain, base_domain_name_guesses(domain), ": {}".format(error) if error else ""))

    def _find_txt_record_id(self, zone_id, name, txtvalue):
        params = {'type': 'TXT', 'name': name, 'content': txtvalue, 'per_page': 1}
        records = self.cf.zones.dns_records.get(zone_id, params=params)
        if records:
            return records[0]['id']
        return None

    def add_dns_record(self, domain, txtvalue):
        name = domain.rstrip('.')
        zone_id = self._find_zone_id(name)
        data = {'type': 'TXT', 'name': name, 'content': txtvalue, 'ttl': self.dns_ttl}
        log('Adding \'{} {} IN TXT "{}"\' to Cloudflare zone {}'.format(name, self.dns_ttl, txtvalue, zone_id))
        try:
            record = self.cf.zones.dns_records.post(zone_id, data=data)
        except CloudFlare.exceptions.CloudFlareAPIError as e:
            hint = ' (Does your API token have "Zone:DNS:Edit" permissions?)' if int(e) == 1009 else ''
            raise ValueError("Error adding TXT record for {} via the Cloudflare API: {}{}".format(name, e, hint))
        if record and 'id' in record:
            self._record_ids[(name, txtvalue)] = record['id']

    def remove_dns_record(self, domain, txtvalue):
        name = domain.rstrip('.')
        zone_id = self._find_zone_id(name)
        try:
            record_id = self._record_ids.pop((name, txtvalue), None)
            if record_id is None:
                record_id = self._find_txt_record_id(zone_id, name, txtvalue)
            if record_id is None:
                log("TXT record {} not found in Cloudflare zone {}, no cleanup needed".format(name, zone_id))
                return
            log('Deleting \'{} IN TXT "{}"\' from Cloudflare zone {}'.format(name, txtvalue, zone_id))
            self.cf.zones.dns_records.delete(zone_id, record_id)
        except CloudFlare.exceptions.CloudFlareAPIError as e:
            raise ValueError("Error deleting TXT record for {} via the Cloudflare API: {}".format(name, e))
