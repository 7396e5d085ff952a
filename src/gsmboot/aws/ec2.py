import boto3


def attach_volume(region: str, volume_id: str, instance_id: str, device: str) -> str:
    """Request attachment of a volume. Returns the attachment state."""
    ec2 = boto3.client("ec2", region_name=region)
    response = ec2.attach_volume(
        Device=device, InstanceId=instance_id, VolumeId=volume_id,
    )
    return response.get("State", "")


def get_volume_attachment(region: str, volume_id: str) -> str | None:
    """Return the instance id the volume is attached to, if any."""
    ec2 = boto3.client("ec2", region_name=region)
    response = ec2.describe_volumes(VolumeIds=[volume_id])
    volumes = response.get("Volumes", [])
    if not volumes:
        return None
    for attachment in volumes[0].get("Attachments", []):
        if attachment.get("State") in ("attaching", "attached"):
            return attachment["InstanceId"]
    return None


def terminate_instance(region: str, instance_id: str) -> None:
    ec2 = boto3.client("ec2", region_name=region)
    ec2.terminate_instances(InstanceIds=[instance_id])
