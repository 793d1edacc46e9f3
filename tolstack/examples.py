"""Built-in example stack-ups for demonstration."""

from tolstack.gdt import FeatureControl, GdtSymbol, SizeLimits
from tolstack.geometry import FeatureFrame, Geometry3D, GeometryClass
from tolstack.models import (
    Contributor, Direction, Distribution, GdtContribution, MaterialCondition, Stackup, Target,
)


def create_gap_example() -> Stackup:
    """Classic 1D housing/shaft gap.

    Dimension loop:
        +Housing bore depth
        -Shaft length
        -Spacer thickness
        -Washer thickness
        = Gap (0.5 .. 1.5)
    """
    return Stackup(
        name="Housing-Shaft Gap",
        description="Axial gap between shaft shoulder and housing wall",
        target=Target(name="Gap", nominal=1.0, upper_limit=1.5, lower_limit=0.5),
        contributors=(
            Contributor(
                name="Housing bore depth",
                nominal=50.0,
                plus_tol=0.10,
                minus_tol=0.10,
                direction=Direction.POSITIVE,
            ),
            Contributor(
                name="Shaft length",
                nominal=45.0,
                plus_tol=0.08,
                minus_tol=0.08,
                direction=Direction.NEGATIVE,
            ),
            Contributor(
                name="Spacer thickness",
                nominal=2.0,
                plus_tol=0.15,
                minus_tol=0.10,
                direction=Direction.NEGATIVE,
            ),
            Contributor(
                name="Washer thickness",
                nominal=2.0,
                plus_tol=0.05,
                minus_tol=0.05,
                direction=Direction.NEGATIVE,
                distribution=Distribution.UNIFORM,
            ),
        ),
    )


def create_hole_position_example() -> Stackup:
    """Edge distance to a located hole, with an MMC position callout.

    The hole (10.0 +0.10/-0.05) is measured at 10.02, giving 0.07 of bonus
    on its 0.25 position tolerance.
    """
    return Stackup(
        name="Hole Edge Distance",
        target=Target(name="Edge wall", nominal=3.0, upper_limit=3.6, lower_limit=2.4),
        contributors=(
            Contributor(
                name="Hole location",
                nominal=8.0,
                plus_tol=0.05,
                minus_tol=0.05,
            ),
            Contributor(
                name="Hole size",
                nominal=10.0,
                plus_tol=0.10,
                minus_tol=0.05,
                direction=Direction.NEGATIVE,
                gdt=GdtContribution(
                    position_tolerance=0.25,
                    actual_size=10.02,
                    material_condition=MaterialCondition.MMC,
                    internal=True,
                ),
            ),
            Contributor(
                name="Plate half width",
                nominal=10.0,
                plus_tol=0.10,
                minus_tol=0.10,
                distribution=Distribution.TRIANGULAR,
            ),
        ),
    )


def create_bracket_chain_example() -> Stackup:
    """Three-feature chain: base plane, locating pin, cover seat.

    The cover seat height above the base is checked along +Z.

        base plane  (0, 0, 0)    normal +Z
        pin         (20, 0, 5)   axis +Z, length 10
        cover seat  (20, 0, 15)  normal +Z, length 30
    """
    features = (
        FeatureFrame(
            id="base",
            geometry_class=GeometryClass.PLANE,
            geometry=Geometry3D(origin=(0.0, 0.0, 0.0), axis=(0.0, 0.0, 1.0), length=40.0),
        ),
        FeatureFrame(
            id="pin",
            geometry_class=GeometryClass.CYLINDER,
            geometry=Geometry3D(origin=(20.0, 0.0, 5.0), axis=(0.0, 0.0, 1.0), length=10.0),
            size=SizeLimits(nominal=6.0, plus_tol=0.0, minus_tol=0.02, internal=False),
            controls=(
                FeatureControl(GdtSymbol.POSITION, 0.10, MaterialCondition.MMC, ("A",)),
                FeatureControl(GdtSymbol.PERPENDICULARITY, 0.05, datum_refs=("A",)),
            ),
        ),
        FeatureFrame(
            id="cover_seat",
            geometry_class=GeometryClass.PLANE,
            geometry=Geometry3D(origin=(20.0, 0.0, 15.0), axis=(0.0, 0.0, 1.0), length=30.0),
            angular_tolerance=0.001,
        ),
    )
    return Stackup(
        name="Bracket Cover Height",
        target=Target(name="Cover height", nominal=15.0, upper_limit=15.3, lower_limit=14.7),
        contributors=(
            Contributor(name="Base thickness", nominal=5.0, plus_tol=0.05, minus_tol=0.05,
                        feature="base"),
            Contributor(name="Pin location", nominal=0.0, plus_tol=0.0, minus_tol=0.0,
                        feature="pin"),
            Contributor(name="Seat height", nominal=10.0, plus_tol=0.08, minus_tol=0.08,
                        feature="cover_seat"),
        ),
        features=features,
        functional_direction=(0.0, 0.0, 1.0),
    )
