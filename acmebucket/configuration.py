#!/usr/bin/env python
# -*- coding: utf-8 -*-

# config - acmebucket config parser
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import argparse
import io
import json
import os
import re

from acmebucket.authority import authority_url
from acmebucket.modes import DEFAULT_MODE
from acmebucket.storage import DEFAULT_STORAGE
from acmebucket.tools import idna_convert, ConfigurationError

# Configuration defaults to use if not specified otherwise
DEFAULT_REGION = "us-east-1"
DEFAULT_TTL = 0  # days, 0 = always renew
STORAGE_BACKENDS = ("s3", "file")
TRUE_VALUES = ("true", "yes", "1", "on")
FALSE_VALUES = ("false", "no", "0", "off", "")

# Environment variables holding challenge handler credentials
HANDLER_ENVIRONMENT = {
    "cloudflare_api_token": "CLOUDFLARE_DNS_API_TOKEN",
    "cloudflare_api_key": "CLOUDFLARE_API_KEY",
    "cloudflare_email": "CLOUDFLARE_EMAIL",
    "cloudflare_zone_id": "CLOUDFLARE_ZONE_ID",
}


# @brief pick the first value that is set: command line > environment > config file > default
def select_value(arg, environ, env_name, fileconfig, file_name, default=None):
    if arg is not None:
        return arg
    if environ.get(env_name):
        return environ[env_name]
    if fileconfig.get(file_name) is not None:
        return fileconfig[file_name]
    return default


# @brief convert a bool-ish config value
def parse_bool(name, value):
    if isinstance(value, bool):
        return value
    if str(value).strip().lower() in TRUE_VALUES:
        return True
    if str(value).strip().lower() in FALSE_VALUES:
        return False
    raise ConfigurationError("Invalid boolean value for {}: {}".format(name, value))


# @brief split a comma (or whitespace) separated domain list, keeping order and dropping duplicates
def parse_domains(value):
    if isinstance(value, (list, tuple)):
        candidates = [str(x) for x in value]
    else:
        candidates = re.split(r"[,\s]+", str(value or ""))
    domains = list()
    for domain in (x.strip().lower() for x in candidates):
        if domain and domain not in domains:
            domains.append(domain)
    return domains


# @brief load a json or yaml configuration file
def load_file(path):
    if not os.path.isfile(path):
        raise ConfigurationError("Configuration file {} does not exist".format(path))
    with io.open(path) as config_fd:
        try:
            fileconfig = json.load(config_fd)
        except ValueError:
            import yaml
            config_fd.seek(0)
            try:
                fileconfig = yaml.safe_load(config_fd)
            except yaml.YAMLError as e:
                raise ConfigurationError("Could not parse configuration file {}: {}".format(path, e))
    if not isinstance(fileconfig, dict):
        raise ConfigurationError("Configuration file {} does not contain a mapping".format(path))
    return fileconfig


# @brief assemble and check the challenge handler settings
def parse_handler(args, environ, fileconfig):
    handler = dict(fileconfig.get('handler') or {})
    handler['mode'] = select_value(args.mode, environ, 'ACMEBUCKET_DNS_MODE', handler, 'mode', DEFAULT_MODE)
    for name, env_name in HANDLER_ENVIRONMENT.items():
        if environ.get(env_name):
            handler[name] = environ[env_name]

    if handler['mode'] == 'dns.cloudflare':
        if not handler.get('cloudflare_api_token') and not (handler.get('cloudflare_email') and
                                                            handler.get('cloudflare_api_key')):
            raise ConfigurationError("Missing Cloudflare credentials: set CLOUDFLARE_DNS_API_TOKEN "
                                     "(or CLOUDFLARE_EMAIL and CLOUDFLARE_API_KEY)")
    elif handler['mode'] == 'dns.nsupdate':
        if not handler.get('nsupdate_keyfile') and not (handler.get('nsupdate_keyname') and
                                                        handler.get('nsupdate_keyvalue')):
            raise ConfigurationError("Missing nsupdate credentials: set nsupdate_keyfile "
                                     "(or nsupdate_keyname and nsupdate_keyvalue)")
    else:
        raise ConfigurationError("Unsupported challenge handler mode: {}".format(handler['mode']))
    return handler


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="acmebucket - ACME certificates with DNS validation and "
                                                 "bucket storage")
    parser.add_argument("-c", "--config-file", nargs="?",
                        help="JSON or YAML configuration file (default=$ACMEBUCKET_CONFIG)")
    parser.add_argument("-d", "--domains", nargs="?",
                        help="comma separated list of domains, the first one is the certificate CN")
    parser.add_argument("-e", "--email", nargs="?", help="contact email of the ACME account")
    parser.add_argument("-b", "--bucket", nargs="?", help="storage bucket (or directory for file storage)")
    parser.add_argument("--region", nargs="?", help="storage region (default='{}')".format(DEFAULT_REGION))
    parser.add_argument("--storage", nargs="?", choices=STORAGE_BACKENDS,
                        help="storage backend (default='{}')".format(DEFAULT_STORAGE))
    parser.add_argument("--production", action="store_const", const=True,
                        help="use the production CA instead of the staging CA")
    parser.add_argument("--authority", nargs="?", help="ACME server base url (overrides --production)")
    parser.add_argument("--ttl-days", nargs="?", type=int,
                        help="skip renewal while the stored certificate is valid for this many days")
    parser.add_argument("--mode", nargs="?", help="challenge handler (default='{}')".format(DEFAULT_MODE))
    return parser.parse_args(argv)


# @brief load the configuration from command line, environment and configuration file
# @param argv command line arguments (default: sys.argv)
# @param environ environment (default: os.environ)
# @return the runtime configuration
# @exception ConfigurationError if a required value is missing or malformed
def load(argv=None, environ=None):
    if environ is None:
        environ = os.environ
    args = parse_args(argv)

    config_file = args.config_file or environ.get('ACMEBUCKET_CONFIG')
    fileconfig = load_file(config_file) if config_file else {}

    config = dict()

    # Certificate authority
    config['production'] = parse_bool('production', select_value(
        args.production, environ, 'USE_PRODUCTION_CA', fileconfig, 'production', False))
    config['authority'] = select_value(args.authority, environ, 'ACME_AUTHORITY', fileconfig, 'authority',
                                       authority_url(config['production']))

    # Account contact
    config['email'] = select_value(args.email, environ, 'LETSENCRYPT_EMAIL', fileconfig, 'email')
    if not config['email']:
        raise ConfigurationError("Missing account email: set LETSENCRYPT_EMAIL or --email")
    if '@' not in config['email']:
        raise ConfigurationError("Invalid account email: {}".format(config['email']))

    # Domains (converted to IDNA, first is CN)
    domains = parse_domains(select_value(args.domains, environ, 'LETSENCRYPT_DOMAINS', fileconfig, 'domains'))
    if not domains:
        raise ConfigurationError("Missing domains: set LETSENCRYPT_DOMAINS or --domains")
    config['domaintranslation'] = idna_convert(domains)
    config['domainlist'] = [x for x, _ in config['domaintranslation']]

    # Storage
    config['storage'] = select_value(args.storage, environ, 'ACMEBUCKET_STORAGE', fileconfig, 'storage',
                                     DEFAULT_STORAGE)
    if config['storage'] not in STORAGE_BACKENDS:
        raise ConfigurationError("Unsupported storage backend: {}".format(config['storage']))
    config['bucket'] = select_value(args.bucket, environ, 'S3_BUCKET', fileconfig, 'bucket')
    if not config['bucket']:
        raise ConfigurationError("Missing storage bucket: set S3_BUCKET or --bucket")
    config['region'] = select_value(args.region, environ, 'AWS_REGION', fileconfig, 'region', DEFAULT_REGION)

    # Renewal window
    try:
        config['ttl_days'] = int(select_value(args.ttl_days, environ, 'RENEW_TTL_DAYS', fileconfig, 'ttl_days',
                                              DEFAULT_TTL))
    except (TypeError, ValueError):
        raise ConfigurationError("Invalid renewal window (ttl_days), expected a number of days")
    if config['ttl_days'] < 0:
        raise ConfigurationError("Invalid renewal window (ttl_days): {}".format(config['ttl_days']))

    # Challenge handler
    config['handler'] = parse_handler(args, environ, fileconfig)

    return config
