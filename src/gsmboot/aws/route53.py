import boto3


DNS_TTL = 300
DNS_COMMENT = "Game Server"


def upsert_a_record(
    region: str, zone_id: str, name: str, value: str,
    ttl: int = DNS_TTL, comment: str = DNS_COMMENT,
) -> str:
    """Point an A record at ``value``. Returns the change id."""
    route53 = boto3.client("route53", region_name=region)
    response = route53.change_resource_record_sets(
        HostedZoneId=zone_id,
        ChangeBatch={
            "Comment": comment,
            "Changes": [{
                "Action": "UPSERT",
                "ResourceRecordSet": {
                    "Name": name,
                    "Type": "A",
                    "TTL": ttl,
                    "ResourceRecords": [{"Value": value}],
                },
            }],
        },
    )
    return response["ChangeInfo"]["Id"]
