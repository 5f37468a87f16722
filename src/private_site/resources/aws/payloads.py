"""Typed attribute ↔ AWS wire-format conversion.

Every request body the adapters send is built here from plain attribute
values, and every observed response is reduced here to the same attribute
names so that desired and observed state can be compared key by key.
"""

from __future__ import annotations

import copy
import hashlib
import ipaddress
import json
from collections.abc import Iterable, Mapping
from typing import Any

POLICY_VERSION = "2012-10-17"
CLOUDFRONT_HOSTED_ZONE_ID = "Z2FDTNDATAQYW2"
WAF_SCOPE = "CLOUDFRONT"

CLOUDFRONT_STATEMENT_SID = "AllowCloudFrontServicePrincipal"
SOURCE_ACCESS_SID = "AllowSourceAccess"
POLICY_UPDATE_SID = "AllowPolicyUpdate"
DENY_OTHERS_SID = "DenyAllOthers"


# -- S3 ------------------------------------------------------------------------


def public_access_block(enabled: bool = True) -> dict[str, bool]:
    return {
        "BlockPublicAcls": enabled,
        "IgnorePublicAcls": enabled,
        "BlockPublicPolicy": enabled,
        "RestrictPublicBuckets": enabled,
    }


def create_bucket_request(name: str, region: str) -> dict[str, Any]:
    """``create_bucket`` kwargs; us-east-1 rejects an explicit constraint."""
    request: dict[str, Any] = {"Bucket": name}
    if region != "us-east-1":
        request["CreateBucketConfiguration"] = {"LocationConstraint": region}
    return request


def bucket_region(location_constraint: str | None) -> str:
    """S3 reports us-east-1 as an empty location constraint."""
    if not location_constraint or location_constraint == "None":
        return "us-east-1"
    if location_constraint == "EU":
        return "eu-west-1"
    return location_constraint


def origin_domain(bucket: str) -> str:
    return f"{bucket}.s3.amazonaws.com"


def origin_bucket(domain: str) -> str:
    """Inverse of :func:`origin_domain`."""
    return domain.removesuffix(".s3.amazonaws.com")


def bucket_arn(bucket: str) -> str:
    return f"arn:aws:s3:::{bucket}"


def cloudfront_statement(bucket: str, distribution_arn: str) -> dict[str, Any]:
    return {
        "Sid": CLOUDFRONT_STATEMENT_SID,
        "Effect": "Allow",
        "Principal": {"Service": "cloudfront.amazonaws.com"},
        "Action": "s3:GetObject",
        "Resource": f"{bucket_arn(bucket)}/*",
        "Condition": {"StringEquals": {"AWS:SourceArn": distribution_arn}},
    }


def source_condition(cidrs: list[str], vpc_ids: list[str]) -> dict[str, Any]:
    """Condition block admitting requests from *cidrs* or *vpc_ids*."""
    if cidrs and vpc_ids:
        return {
            "IpAddressIfExists": {"aws:SourceIp": list(cidrs)},
            "StringEqualsIfExists": {"aws:SourceVpc": list(vpc_ids)},
        }
    if cidrs:
        return {"IpAddress": {"aws:SourceIp": list(cidrs)}}
    if vpc_ids:
        return {"StringEquals": {"aws:SourceVpc": list(vpc_ids)}}
    msg = "A source condition needs at least one CIDR block or VPC id"
    raise ValueError(msg)


def deny_condition(cidrs: list[str], vpc_ids: list[str]) -> dict[str, Any]:
    """Condition matching every request from outside *cidrs* and *vpc_ids*."""
    condition: dict[str, Any] = {}
    if vpc_ids:
        condition["StringNotEqualsIfExists"] = {"aws:SourceVpc": list(vpc_ids)}
    if cidrs:
        condition["NotIpAddressIfExists"] = {"aws:SourceIp": list(cidrs)}
    return condition


def source_statements(
    bucket: str, cidrs: list[str], vpc_ids: list[str]
) -> list[dict[str, Any]]:
    """Allow *cidrs* and *vpc_ids* to read and re-key the bucket, deny everyone else."""
    condition = source_condition(cidrs, vpc_ids)
    return [
        {
            "Sid": SOURCE_ACCESS_SID,
            "Effect": "Allow",
            "Principal": "*",
            "Action": ["s3:ListBucket", "s3:GetObject"],
            "Resource": [bucket_arn(bucket), f"{bucket_arn(bucket)}/*"],
            "Condition": condition,
        },
        {
            "Sid": POLICY_UPDATE_SID,
            "Effect": "Allow",
            "Principal": "*",
            "Action": "s3:PutBucketPolicy",
            "Resource": bucket_arn(bucket),
            "Condition": copy.deepcopy(condition),
        },
        {
            "Sid": DENY_OTHERS_SID,
            "Effect": "Deny",
            "Principal": "*",
            "Action": "s3:*",
            "Resource": [bucket_arn(bucket), f"{bucket_arn(bucket)}/*"],
            "Condition": deny_condition(cidrs, vpc_ids),
        },
    ]


def bucket_policy(
    bucket: str,
    *,
    distribution_arn: str | None = None,
    cidrs: list[str] | None = None,
    vpc_ids: list[str] | None = None,
) -> dict[str, Any]:
    """Either the CloudFront grant alone or the source-restricted statements.

    The deny statement of a source-restricted policy also matches CloudFront,
    so the two layouts never share a document.
    """
    if cidrs or vpc_ids:
        if distribution_arn:
            msg = "A source-restricted bucket policy carries no CloudFront grant"
            raise ValueError(msg)
        statements = source_statements(bucket, cidrs or [], vpc_ids or [])
    elif distribution_arn:
        statements = [cloudfront_statement(bucket, distribution_arn)]
    else:
        msg = "A bucket policy needs a distribution ARN or allowed sources"
        raise ValueError(msg)
    return {"Version": POLICY_VERSION, "Statement": statements}


def policy_version(document: Mapping[str, Any]) -> str:
    """Content hash standing in for an etag (S3 policies carry none)."""
    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


_SOURCE_OPERATORS = {"ipaddress", "ipaddressifexists", "stringequals", "stringequalsifexists"}


class UnreadablePolicyError(ValueError):
    """A public statement whose conditions are not a plain source allow-list."""


def _is_public(statement: Mapping[str, Any]) -> bool:
    principal = statement.get("Principal")
    if isinstance(principal, Mapping):
        principal = principal.get("AWS")
    return "*" in _as_list(principal)


def allowed_sources(document: Mapping[str, Any]) -> tuple[list[str], list[str]]:
    """Return the ``(cidrs, vpc_ids)`` admitted by a policy's public statements.

    Every ``Allow`` statement with a ``*`` principal counts, whatever its Sid,
    so policies written by other tools are read as well.  A public statement
    with no condition, or with conditions other than ``aws:SourceIp`` /
    ``aws:SourceVpc`` matches, raises :class:`UnreadablePolicyError`.
    """
    cidrs: list[str] = []
    vpcs: list[str] = []
    for statement in document.get("Statement", []):
        if statement.get("Effect") != "Allow" or not _is_public(statement):
            continue
        sid = statement.get("Sid", "<no sid>")
        conditions = statement.get("Condition") or {}
        if not conditions:
            msg = f"Statement {sid} allows everyone without a source condition"
            raise UnreadablePolicyError(msg)
        for operator, operator_block in conditions.items():
            for cond_key, value in operator_block.items():
                key = cond_key.lower()
                if operator.lower() not in _SOURCE_OPERATORS or key not in (
                    "aws:sourceip",
                    "aws:sourcevpc",
                ):
                    msg = f"Statement {sid} has an unsupported condition {operator}:{cond_key}"
                    raise UnreadablePolicyError(msg)
                target = cidrs if key == "aws:sourceip" else vpcs
                target.extend(v for v in _as_list(value) if v not in target)
    return cidrs, vpcs


# -- CloudFront ------------------------------------------------------------------


def origin_access_control_config(name: str) -> dict[str, str]:
    return {
        "Name": name,
        "Description": "OAC for Private S3 Website",
        "SigningProtocol": "sigv4",
        "SigningBehavior": "always",
        "OriginAccessControlOriginType": "s3",
    }


def origin_access_control_attributes(config: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "signing_protocol": config.get("SigningProtocol"),
        "signing_behavior": config.get("SigningBehavior"),
        "origin_type": config.get("OriginAccessControlOriginType"),
    }


def _distribution_skeleton(bucket: str, caller_reference: str) -> dict[str, Any]:
    origin_id = f"S3-{bucket}"
    return {
        "CallerReference": caller_reference,
        "Aliases": {"Quantity": 0},
        "Origins": {
            "Quantity": 1,
            "Items": [
                {
                    "Id": origin_id,
                    "DomainName": origin_domain(bucket),
                    "OriginAccessControlId": "",
                    "S3OriginConfig": {"OriginAccessIdentity": ""},
                }
            ],
        },
        "DefaultRootObject": "index.html",
        "DefaultCacheBehavior": {
            "TargetOriginId": origin_id,
            "ViewerProtocolPolicy": "redirect-to-https",
            "AllowedMethods": {"Quantity": 2, "Items": ["GET", "HEAD"]},
            "ForwardedValues": {"QueryString": False, "Cookies": {"Forward": "none"}},
            "MinTTL": 0,
            "DefaultTTL": 86400,
            "MaxTTL": 31536000,
        },
        "PriceClass": "PriceClass_100",
        "Comment": f"CloudFront Distribution for {bucket}",
        "Enabled": True,
        "HttpVersion": "http2",
        "IsIPV6Enabled": True,
        "Logging": {"Enabled": False, "IncludeCookies": False, "Bucket": "", "Prefix": ""},
        "ViewerCertificate": viewer_certificate(None),
    }


def viewer_certificate(certificate_arn: str | None) -> dict[str, Any]:
    if certificate_arn:
        return {
            "ACMCertificateArn": certificate_arn,
            "SSLSupportMethod": "sni-only",
            "MinimumProtocolVersion": "TLSv1.2_2021",
        }
    return {
        "CloudFrontDefaultCertificate": True,
        "MinimumProtocolVersion": "TLSv1.2_2021",
        "SSLSupportMethod": "vip",
    }


def apply_distribution_attributes(
    config: Mapping[str, Any], attributes: Mapping[str, Any]
) -> dict[str, Any]:
    """Return a copy of a ``DistributionConfig`` with *attributes* written in.

    Fields not named in *attributes* are carried over untouched, so an
    update never resets settings someone else manages.
    """
    updated = copy.deepcopy(dict(config))
    behavior = updated.setdefault("DefaultCacheBehavior", {})
    for name, value in attributes.items():
        if name == "aliases":
            items = list(value or [])
            updated["Aliases"] = (
                {"Quantity": len(items), "Items": items} if items else {"Quantity": 0}
            )
        elif name == "certificate_arn":
            updated["ViewerCertificate"] = viewer_certificate(value)
        elif name == "origin_access_control_id":
            updated["Origins"]["Items"][0]["OriginAccessControlId"] = value or ""
        elif name == "default_root_object":
            updated["DefaultRootObject"] = value
        elif name == "min_ttl":
            behavior["MinTTL"] = value
        elif name == "default_ttl":
            behavior["DefaultTTL"] = value
        elif name == "max_ttl":
            behavior["MaxTTL"] = value
        elif name == "price_class":
            updated["PriceClass"] = value
        elif name == "comment":
            updated["Comment"] = value
        elif name == "enabled":
            updated["Enabled"] = bool(value)
        elif name == "web_acl_id":
            updated["WebACLId"] = value or ""
        elif name == "origin_domain":
            continue
        else:
            msg = f"Unknown distribution attribute '{name}'"
            raise ValueError(msg)
    return updated


def distribution_config(
    bucket: str, caller_reference: str, attributes: Mapping[str, Any]
) -> dict[str, Any]:
    return apply_distribution_attributes(
        _distribution_skeleton(bucket, caller_reference), attributes
    )


def distribution_attributes(config: Mapping[str, Any]) -> dict[str, Any]:
    origins = config.get("Origins", {}).get("Items", []) or [{}]
    origin = origins[0]
    behavior = config.get("DefaultCacheBehavior", {})
    viewer = config.get("ViewerCertificate", {})
    return {
        "origin_domain": origin.get("DomainName"),
        "origin_access_control_id": origin.get("OriginAccessControlId") or None,
        "aliases": list(config.get("Aliases", {}).get("Items", []) or []),
        "certificate_arn": viewer.get("ACMCertificateArn") or None,
        "default_root_object": config.get("DefaultRootObject"),
        "min_ttl": behavior.get("MinTTL"),
        "default_ttl": behavior.get("DefaultTTL"),
        "max_ttl": behavior.get("MaxTTL"),
        "price_class": config.get("PriceClass"),
        "comment": config.get("Comment"),
        "enabled": config.get("Enabled"),
        "web_acl_id": config.get("WebACLId") or "",
    }


def name_tags(value: str) -> dict[str, Any]:
    return {"Items": [{"Key": "Name", "Value": value}]}


# -- WAF -------------------------------------------------------------------------


def ip_set_addresses(cidrs: Iterable[str]) -> list[str]:
    """IPv4 CIDRs for a WAF IP-set, de-duplicated in declaration order."""
    addresses: list[str] = []
    for cidr in cidrs:
        network = ipaddress.ip_network(cidr, strict=False)
        if network.version != 4:
            msg = f"WAF IP-set is IPv4; cannot allow {cidr}"
            raise ValueError(msg)
        text = str(network)
        if text not in addresses:
            addresses.append(text)
    return addresses


def _visibility(metric_name: str) -> dict[str, Any]:
    return {
        "SampledRequestsEnabled": True,
        "CloudWatchMetricsEnabled": True,
        "MetricName": metric_name,
    }


def web_acl_body(name: str, ip_set_arns: list[str], rule_name: str) -> dict[str, Any]:
    """Default-block web ACL whose single rule allows the IP-set(s)."""
    rules = [
        {
            "Name": rule_name if i == 0 else f"{rule_name}-{i}",
            "Priority": i,
            "Action": {"Allow": {}},
            "Statement": {"IPSetReferenceStatement": {"ARN": arn}},
            "VisibilityConfig": _visibility(rule_name if i == 0 else f"{rule_name}-{i}"),
        }
        for i, arn in enumerate(ip_set_arns)
    ]
    return {
        "Name": name,
        "Scope": WAF_SCOPE,
        "DefaultAction": {"Block": {}},
        "Rules": rules,
        "VisibilityConfig": _visibility(name),
    }


def web_acl_attributes(web_acl: Mapping[str, Any]) -> dict[str, Any]:
    default = web_acl.get("DefaultAction", {})
    arns = [
        rule["Statement"]["IPSetReferenceStatement"]["ARN"]
        for rule in web_acl.get("Rules", [])
        if "IPSetReferenceStatement" in rule.get("Statement", {})
    ]
    return {
        "default_action": "block" if "Block" in default else "allow",
        "ip_set_arns": arns,
    }


# -- Route 53 --------------------------------------------------------------------


def fqdn(name: str) -> str:
    return name if name.endswith(".") else f"{name}."


def bare(name: str) -> str:
    return name.rstrip(".").lower()


def alias_attributes(target_domain: str) -> dict[str, Any]:
    return {
        "alias_target": bare(target_domain),
        "alias_zone_id": CLOUDFRONT_HOSTED_ZONE_ID,
        "evaluate_target_health": False,
    }


def record_set(name: str, record_type: str, attributes: Mapping[str, Any]) -> dict[str, Any]:
    rrset: dict[str, Any] = {"Name": fqdn(name), "Type": record_type}
    if "alias_target" in attributes:
        rrset["AliasTarget"] = {
            "HostedZoneId": attributes.get("alias_zone_id", CLOUDFRONT_HOSTED_ZONE_ID),
            "DNSName": attributes["alias_target"],
            "EvaluateTargetHealth": bool(attributes.get("evaluate_target_health", False)),
        }
    else:
        rrset["TTL"] = attributes.get("ttl", 300)
        rrset["ResourceRecords"] = [{"Value": v} for v in attributes.get("values", [])]
    return rrset


def record_attributes(rrset: Mapping[str, Any]) -> dict[str, Any]:
    alias = rrset.get("AliasTarget")
    if alias:
        return {
            "alias_target": bare(alias.get("DNSName", "")),
            "alias_zone_id": alias.get("HostedZoneId"),
            "evaluate_target_health": alias.get("EvaluateTargetHealth", False),
        }
    return {
        "ttl": rrset.get("TTL"),
        "values": [r["Value"] for r in rrset.get("ResourceRecords", [])],
    }


def change_batch(action: str, rrset: Mapping[str, Any], comment: str) -> dict[str, Any]:
    return {
        "Comment": comment,
        "Changes": [{"Action": action, "ResourceRecordSet": dict(rrset)}],
    }


# -- ACM -------------------------------------------------------------------------


def idempotency_token(domain: str) -> str:
    """ACM tokens are word characters, at most 32 long."""
    return "".join(ch for ch in domain if ch.isalnum())[:32]
