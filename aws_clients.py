import boto3

import config


def _client_kwargs():
    kwargs = {"region_name": config.AWS_REGION}
    if config.AWS_ENDPOINT_URL:
        kwargs["endpoint_url"] = config.AWS_ENDPOINT_URL
    return kwargs


def get_client(service_name: str):
    """boto3 client for the configured region (and LocalStack endpoint, if set)"""
    return boto3.client(service_name, **_client_kwargs())


def get_resource(service_name: str):
    return boto3.resource(service_name, **_client_kwargs())
