# spotmonitor/catalog.py
from spotmonitor.errors import ValidationError

SUPPORTED_INSTANCE_FAMILIES = frozenset([
    # P2 (K80)
    "p2.xlarge", "p2.8xlarge", "p2.16xlarge",
    # P3 (V100)
    "p3.2xlarge", "p3.8xlarge", "p3.16xlarge", "p3dn.24xlarge",
    # P4 (A100)
    "p4d.24xlarge", "p4de.24xlarge",
    # P5 (H100)
    "p5.8xlarge", "p5.16xlarge", "p5.24xlarge", "p5.48xlarge",
    # G3 (M60)
    "g3.4xlarge", "g3.8xlarge", "g3.16xlarge", "g3s.xlarge",
    # G4dn (T4)
    "g4dn.xlarge", "g4dn.2xlarge", "g4dn.4xlarge", "g4dn.8xlarge",
    "g4dn.12xlarge", "g4dn.16xlarge", "g4dn.metal",
    # G5 (A10G)
    "g5.xlarge", "g5.2xlarge", "g5.4xlarge", "g5.8xlarge",
    "g5.12xlarge", "g5.16xlarge", "g5.24xlarge", "g5.48xlarge",
    # G6 (L4)
    "g6.xlarge", "g6.2xlarge", "g6.4xlarge", "g6.8xlarge",
    "g6.12xlarge", "g6.16xlarge", "g6.24xlarge", "g6.48xlarge",
    # G6e (L40S)
    "g6e.xlarge", "g6e.2xlarge", "g6e.4xlarge", "g6e.8xlarge",
    "g6e.12xlarge", "g6e.16xlarge", "g6e.24xlarge", "g6e.48xlarge",
    # Gr6 (RTX 6000 Ada)
    "gr6.4xlarge", "gr6.8xlarge",
])

SUPPORTED_REGIONS = frozenset([
    "us-east-1", "us-east-2", "us-west-1", "us-west-2",
    "ca-central-1",
    "eu-central-1", "eu-west-1", "eu-west-2", "eu-west-3", "eu-north-1",
    "ap-northeast-1", "ap-northeast-2", "ap-northeast-3",
    "ap-southeast-1", "ap-southeast-2",
    "ap-south-1",
    "sa-east-1",
])

# Relative price/performance of each GPU generation, higher is better.
PERFORMANCE_WEIGHTS = {
    "g6": 9.5,
    "g5": 9.0,
    "g6e": 8.5,
    "gr6": 8.0,
    "p3": 7.5,
    "p4d": 7.0,
    "p4de": 7.0,
    "p5": 6.5,
    "g4dn": 6.0,
    "g3": 4.0,
    "p2": 3.0,
}
DEFAULT_PERFORMANCE_WEIGHT = 5.0


def list_supported_instance_families():
    return sorted(SUPPORTED_INSTANCE_FAMILIES)


def list_supported_regions():
    return sorted(SUPPORTED_REGIONS)


def validate_instance_family(family):
    if family not in SUPPORTED_INSTANCE_FAMILIES:
        raise ValidationError(f"Invalid instance family: {family}", field="instance_family", value=family)
    return family


def validate_region(region):
    if region not in SUPPORTED_REGIONS:
        raise ValidationError(f"Invalid region: {region}", field="region", value=region)
    return region


def validate_selection(regions=None, families=None):
    """
    Validate a (regions, families) selection before any provider call.
    Empty selections expand to the full supported set.
    Returns sorted lists.
    """
    regions = sorted(set(regions)) if regions else list_supported_regions()
    families = sorted(set(families)) if families else list_supported_instance_families()
    for region in regions:
        validate_region(region)
    for family in families:
        validate_instance_family(family)
    return regions, families
