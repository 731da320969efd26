from decimal import Decimal
from typing import List

from RestaurantCheckout.models import Combo, Extra, IndividualItem

SIDE_OPTIONS = [
    "Ensalada mixta",
    "Papa al horno",
    "Papa,calabaza y batata",
]

COMBOS: List[Combo] = [
    Combo(
        id=1, name="Combo 1", price=Decimal(25000),
        description="1 Pollo  + Guarnición + 2 postrecitos de la casa",
        has_side=True, side_options=list(SIDE_OPTIONS), image="/media/combo1.png"),
    Combo(
        id=2, name="Combo 2", price=Decimal(35000),
        description="2 Pollos  + Guarnición + 4 postrecitos de la casa",
        has_side=True, side_options=list(SIDE_OPTIONS), image="/media/combo2.png"),
    Combo(
        id=3, name="Menú Infantil", price=Decimal(5000),
        description="Hamburguesa con queso y papas fritas",
        has_side=False, image="/media/comboinfantil.png"),
]

INDIVIDUALES: List[IndividualItem] = [
    IndividualItem(id=101, name="Pollo entero", price=Decimal(18000), description="Pollo a la parrilla"),
    IndividualItem(id=102, name="Medio pollo", price=Decimal(10000), description="Medio pollo a la parrilla"),
    IndividualItem(id=103, name="Porción de papas", price=Decimal(4500)),
]

EXTRAS: List[Extra] = [
    Extra(id="cuarto", label=" Presa de pollo extra", price=Decimal(6500), image="/media/presa.png"),
    Extra(id="postre", label="Postrecito de la casa extra", price=Decimal(2000), image="/media/gelatina.png"),
    Extra(id="deshuesado", label="Servicio de deshuesado", price=Decimal(3500), image="/media/deshuesado.png"),
]

# extra offered by the checkout upsell prompt
PROMO_EXTRA_ID = "deshuesado"
