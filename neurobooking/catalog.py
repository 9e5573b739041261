from collections.abc import Iterable

from neurobooking.models import Material, SurgeryType


def _m(id: str, name: str, quantity: int, ref: str | None = None) -> Material:
    return Material(id=id, name=name, quantity=quantity, ref=ref)


SURGERY_TYPES: list[SurgeryType] = [
    SurgeryType(
        id="tumores_tronco",
        name=(
            "Tumores de Tronco / Ángulo Pontocerebeloso / Fosa Posterior / "
            "Neurinoma del Acústico / Meningiomas"
        ),
        estimated_duration=300,
        materials=[
            _m("mat1", "Electrodos pareados", 16, "003-400121"),
            _m("mat2", "Electrodos sacacorchos", 8, "003-400002"),
            _m("mat3", "Electrodos subdérmicos", 3, "003-400101"),
            _m("mat4", "Hook Wire", 6, "003-400160-24"),
            _m("mat5", "Electrodo laríngeo", 1, "4001-00"),
            _m("mat6", "Estimulador monopolar", 1, "3602-00"),
            _m("mat7", "Estimulador pedicular", 1, "3603-00"),
            _m("mat8", "Estimulador bipolar", 1, "3601-00"),
            _m("mat9", "Estimulador acústico", 1),
        ],
    ),
    SurgeryType(
        id="tumor_medular",
        name="Tumor Medular o Vertebral / Tumor Torácico / Dorsal",
        estimated_duration=240,
        materials=[
            _m("mat7", "Estimulador pedicular", 1, "3603-00"),
            _m("mat2", "Electrodos sacacorchos", 6, "003-400002"),
            _m("mat1", "Electrodos pareados", 16, "003-400121"),
            _m("mat3", "Electrodos subdérmicos", 2, "003-400101"),
            _m("mat10", "Electrodos epidurales de 3 contactos", 2, "CEDL-3PDINX-6"),
        ],
    ),
    SurgeryType(
        id="tiroides",
        name="Tiroides / Paratiroides",
        estimated_duration=180,
        materials=[
            _m("mat1", "Electrodos pareados", 6, "003-400121"),
            _m("mat2", "Electrodos sacacorchos", 2, "003-400002"),
            _m("mat3", "Electrodos subdérmicos", 4, "003-400101"),
            _m("mat5", "Electrodo laríngeo", 1, "4001-00"),
            _m("mat7", "Estimulador pedicular", 1, "3603-00"),
            _m("mat11", "Agujas monopolares aisladas", 2, "9004102"),
            _m("mat12", "Alargaderas reutilizables", 2, "019-431500"),
            _m("mat13", "Puentes", 4),
        ],
    ),
    SurgeryType(
        id="tumor_cerebral",
        name="Tumor Cerebral / Tumor Insular / Craneotomía",
        estimated_duration=360,
        materials=[
            _m("mat1", "Electrodos pareados", 12, "003-400121"),
            _m("mat2", "Electrodos sacacorchos", 8, "003-400002"),
            _m("mat3", "Electrodos subdérmicos", 2, "003-400101"),
            _m("mat14", "Tira cortical", 1, "MS04R-IP10X-0JF"),
            _m("mat7", "Estimulador pedicular", 1, "3603-00"),
            _m("mat15", "Estimulador cortical bipolar", 1, "PNH G2,0/80X2"),
            _m("mat6", "Estimulador monopolar", 1, "3602-00"),
            _m("mat16", "Sonda aspirador", 1),
        ],
    ),
    SurgeryType(
        id="nervio_periferico",
        name="Cirugía de Nervio Periférico",
        estimated_duration=200,
        materials=[
            _m("mat1", "Electrodos pareados", 16, "003-400121"),
            _m("mat3", "Electrodos subdérmicos", 2, "003-400101"),
            _m("mat17", "Estimulador de gancho doble", 1),
            _m("mat18", "Estimulador de gancho triple", 1),
        ],
    ),
]


class SurgeryTypeCatalog:
    """Read-only lookup of surgery types by id or display name."""

    def __init__(self, surgery_types: Iterable[SurgeryType] = SURGERY_TYPES) -> None:
        self._types = list(surgery_types)

    def all(self) -> list[SurgeryType]:
        return [t.model_copy(deep=True) for t in self._types]

    def get(self, type_id_or_name: str) -> SurgeryType | None:
        match = next(
            (
                t
                for t in self._types
                if t.id == type_id_or_name or t.name == type_id_or_name
            ),
            None,
        )
        return match.model_copy(deep=True) if match else None

    def get_default_duration(self, type_id: str) -> int | None:
        surgery_type = self.get(type_id)
        return surgery_type.estimated_duration if surgery_type else None

    def get_materials(self, type_id: str) -> list[Material]:
        surgery_type = self.get(type_id)
        return surgery_type.materials if surgery_type else []
