#!/usr/bin/env python
# -*- coding: utf-8 -*-

# storage.s3 - AWS S3 storage backend
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from acmebucket.storage.abstract import AbstractStorage
from acmebucket.tools import log, NotFoundError, StorageError

DEFAULT_REGION = "us-east-1"
NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound")


class Storage(AbstractStorage):
    def __init__(self, config):
        AbstractStorage.__init__(self, config)
        self.region = config.get("region") or DEFAULT_REGION
        self.s3 = boto3.client("s3", region_name=self.region)

    def location(self, name):
        return "s3://{}/{}".format(self.bucket, name)

    def read(self, name):
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=name)
            return response["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in NOT_FOUND_CODES:
                raise NotFoundError("Object {} does not exist".format(self.location(name)))
            raise StorageError("Could not read {}: {}".format(self.location(name), e)) from e
        except BotoCoreError as e:
            raise StorageError("Could not read {}: {}".format(self.location(name), e)) from e

    def write(self, name, data, private=False):
        try:
            self.s3.put_object(Bucket=self.bucket, Key=name, Body=data)
        except (BotoCoreError, ClientError) as e:
            raise StorageError("Could not write {}: {}".format(self.location(name), e)) from e
        log("Uploaded {} to S3 bucket {}".format(name, self.bucket))
