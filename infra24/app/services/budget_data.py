"""Budget categories and per-organization budget configurations."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class BudgetCategory:
    id: str
    name: str
    color: str
    description: str


@dataclass(frozen=True)
class BudgetItem:
    name: str
    category: str
    amount: float
    vendor: Optional[str] = None
    notes: Optional[str] = None
    date: Optional[str] = None


@dataclass(frozen=True)
class ScheduledBudgetItem:
    """Invoice or contract pinned to a fixed date."""

    id: str
    name: str
    category: str
    amount: float
    date: str
    vendor: Optional[str] = None
    notes: Optional[str] = None
    image_hint: Optional[str] = None


@dataclass(frozen=True)
class OrganizationBudgetConfig:
    total_budget: float
    description: str
    items: List[BudgetItem] = field(default_factory=list)
    scheduled_items: List[ScheduledBudgetItem] = field(default_factory=list)


BUDGET_CATEGORIES: List[BudgetCategory] = [
    BudgetCategory("room-build-out", "Room Build-Out", "#3B82F6",
                   "Renovation, construction, and space preparation work"),
    BudgetCategory("hardware-materials", "Hardware & Materials", "#8B5CF6",
                   "Hardware fleet including equipment and materials"),
    BudgetCategory("equipment-maintenance", "Equipment Maintenance", "#10B981",
                   "Maintenance, repairs, and upkeep of equipment"),
    BudgetCategory("streaming", "Streaming", "#06B6D4",
                   "Streaming infrastructure, cabling, and IT services"),
    BudgetCategory("audio", "Audio", "#EC4899",
                   "Audio equipment, microphones, and sound systems"),
    BudgetCategory("contingency", "Contingency & Spare Parts", "#F59E0B",
                   "Backup equipment and contingency funds"),
    BudgetCategory("virtual-reality", "Virtual Reality", "#6366F1",
                   "VR and XR headsets, docks, and accessories"),
    BudgetCategory("3d-printing", "3D Printing", "#EF4444",
                   "3D printers, enclosures, and printing supplies"),
    BudgetCategory("furniture", "Furniture", "#84CC16",
                   "Storage, carts, and workspace furniture"),
    BudgetCategory("large-format-printer", "Large Format Printer", "#14B8A6",
                   "Large format printing equipment and supplies"),
]

CATEGORY_IDS = frozenset(c.id for c in BUDGET_CATEGORIES)

# Share of the total budget per month, September through the following September
MONTHLY_BUDGET_PERCENTAGES = [
    0.12, 0.10, 0.09, 0.08,
    0.08, 0.07, 0.06, 0.05,
    0.05, 0.04, 0.03, 0.03,
    0.02,
]

_IMAGE_SEARCH_TERMS: Dict[str, str] = {
    "room-build-out": "construction+renovation",
    "hardware-materials": "computer+equipment",
    "equipment-maintenance": "tools+repair",
    "streaming": "cabling+network",
    "audio": "microphone+audio",
    "contingency": "tools+equipment",
    "virtual-reality": "virtual+reality",
    "3d-printing": "3d+printer",
    "furniture": "office+furniture",
    "large-format-printer": "printer+studio",
}


def budget_item_image(category: str, item_name: str) -> str:
    term = _IMAGE_SEARCH_TERMS.get(category, "business")
    seed = "-".join(item_name.lower().split())
    return f"https://source.unsplash.com/800x600/?{term}&sig={seed}"


OOLITE_BUDGET_CONFIG = OrganizationBudgetConfig(
    total_budget=80000,
    description="Digital Lab Equipment and Infrastructure",
    items=[
        BudgetItem('Color-accurate reference monitor (27")', "hardware-materials", 1599, "Link1",
                   "Grading/proofing / VESA Mount compatible. Accurate Color Printing, Efficient Printing (Waste Less Ink)",
                   "2025-11-10"),
        BudgetItem("Single Monitor Mount", "hardware-materials", 100, "Link1",
                   "Mounts Color Accurate Monitor", "2025-11-10"),
        BudgetItem("Meta Quest 3 headset", "virtual-reality", 500, "Link1",
                   "VR / XR demos. Metaverse Exhibitions of the Gallery, Mock-up future exhibitions, 3D Modeling, Immersive Cinema, Interactive Video Games",
                   "2025-11-17"),
        BudgetItem("Meta Quest Charging Dock", "virtual-reality", 40, "Link1",
                   "Equipment Display. Magnetic, eliminating constant plugging and unplugging"),
        BudgetItem("Resin 3D Printer", "3d-printing", 720, "Link1",
                   "High Quality Resin Printer with Exhaust for the Window", "2025-11-18"),
        BudgetItem("Resin Enclosure & Exhaust", "3d-printing", 73, "Link1",
                   "Heat Controlled, Exhaust", "2025-11-18"),
        BudgetItem("Amaran 100x Light", "hardware-materials", 200, "Link1",
                   "Video Interview lighting equipment"),
        BudgetItem("Light Soft Box", "hardware-materials", 165, "Link1",
                   "Video Interview lighting equipment"),
        BudgetItem("C Stand Boom Arm Mobile", "hardware-materials", 134, "Link1",
                   "Video Interview lighting equipment"),
        BudgetItem("Verity IT - Cabling Service", "hardware-materials", 4941, "Verity",
                   "Cabling service for streaming infrastructure - December 2025", "2025-12-15"),
        BudgetItem("BenQ Laser Projector", "hardware-materials", 2500, "Link1",
                   "Exhibitions, Presentation (Qty: 2 @ $1,250 each)", "2025-11-12"),
        BudgetItem("3D Printing Rack", "3d-printing", 88, "Link1",
                   "Create space, rollable, can hold up to 2 3D Printers and PLA, Bamboo material",
                   "2025-11-20"),
        BudgetItem("Lighting Strip", "hardware-materials", 120, "Link1",
                   "60ft Ceiling + 60ft Floor (Per room) (Qty: 4 @ $30 each)", "2025-11-05"),
        BudgetItem("Metal Storage Organizer", "furniture", 40, "Link1",
                   "Hold small items, personal accessories"),
        BudgetItem("2 Layer Metal Trolley Cart", "furniture", 143, "Link1",
                   "Hold VR Headset, Small Printer"),
        BudgetItem("Mobile Desktop Workstation", "hardware-materials", 239, "Link1",
                   "Space organization, flexibility. Height Adjustable Rolling Desk"),
        BudgetItem("Raspberry Pi 5 kits (8GB) bundles", "hardware-materials", 660, "Raspberry Pi",
                   "Cases, PSUs, SD cards, HDMI (Qty: 3)", "2025-11-16"),
        BudgetItem("Short-throw Laser portable projector (1080p/4K-ready)", "hardware-materials", 1600,
                   "Projector Supplier", "Workshops & pop-ups"),
        BudgetItem("Digital Lab Paint Floor Space Renovation Contractors", "hardware-materials", 1200,
                   "Contractor", "Paint and floor space renovation work - 10 days @ $120/day",
                   "2025-11-15"),
        BudgetItem("Digital Lab Surface Touch-ups", "hardware-materials", 460, "Denzel Grant",
                   "LED Sign & Touch-Up - Labor and shelving materials", "2025-11-25"),
        BudgetItem("Room Build-Out - Construction Materials & Supplies", "hardware-materials", 2249.87,
                   "Home Depot",
                   "Construction materials for Digital Lab, Cinematic, and Printshop room build-out",
                   "2025-11-01"),
        BudgetItem("IPRSR Service Call Epson P-8000", "hardware-materials", 375,
                   "Image Pro International",
                   "Error code 1561 - Service call for Epson P-8000 large format printer",
                   "2025-11-06"),
        BudgetItem("Epson P-8000 Paper thickness sensor", "hardware-materials", 35,
                   "Image Pro International", "UParts replacement part for Epson P-8000", "2025-11-06"),
        BudgetItem('1 Year Maintenance Agreement - Epson/Canon 17"-36"', "hardware-materials", 600,
                   "Image Pro International",
                   "IPRS1736 - Labor only. 1 visit every 6 months, 20% discount on parts",
                   "2025-11-06"),
        BudgetItem("Epson P-8000 Ink Cartridges (8 total)", "hardware-materials", 1120,
                   "Image Pro International",
                   "Estimate 277694 - 8x UltraChrome HD ink cartridges (350ml each), $140 each",
                   "2025-11-14"),
        BudgetItem("Epson LLK Light Light Black Ink Bundle", "hardware-materials", 899, "Amazon",
                   "Epson T54X900 UltraChrome HD Light Light Black ink cartridge bundle",
                   "2025-11-14"),
        BudgetItem('Rechargeable A1 Light Pad 35.4"x23.6" LED Light Board', "large-format-printer", 170,
                   "Amazon", "Light pad for large format printing and art work", "2025-11-22"),
    ],
    scheduled_items=[
        ScheduledBudgetItem("2025-11-renovation", "Digital Lab Paint Floor Space Renovation Contractors",
                            "room-build-out", 1200, "2025-11-15", "Contractors",
                            "Paint and floor space renovation work", "renovation"),
        ScheduledBudgetItem("2025-12-touchups", "Digital Lab Surface Touch-ups",
                            "room-build-out", 360, "2025-12-10", "Contractors",
                            "Surface touch-ups and finishing work", "touch-ups"),
        ScheduledBudgetItem("2025-12-verity-cabling", "Verity IT - Cabling Service",
                            "streaming", 4941, "2025-12-15", "Verity",
                            "Install the conduit and run fiber line. Install 130 ft of EMT conduit. Clean up 3 old cables",
                            "cabling"),
    ],
)

BAKEHOUSE_BUDGET_CONFIG = OrganizationBudgetConfig(
    total_budget=50000,
    description="Bakehouse Arts Budget",
    items=[
        BudgetItem("Example Item 1", "hardware-materials", 5000, "Supplier", "Example budget item"),
    ],
)

DEFAULT_BUDGET_CONFIG = OrganizationBudgetConfig(
    total_budget=30000,
    description="Organization Budget",
    items=[
        BudgetItem("General Equipment", "hardware-materials", 30000, "Various",
                   "General organization expenses"),
    ],
)

BUDGET_CONFIGS: Dict[str, OrganizationBudgetConfig] = {
    "oolite": OOLITE_BUDGET_CONFIG,
    "bakehouse": BAKEHOUSE_BUDGET_CONFIG,
}


def get_budget_config(org_slug: Optional[str]) -> OrganizationBudgetConfig:
    return BUDGET_CONFIGS.get(org_slug or "", DEFAULT_BUDGET_CONFIG)


def get_category_by_id(category_id: str) -> Optional[BudgetCategory]:
    for category in BUDGET_CATEGORIES:
        if category.id == category_id:
            return category
    return None
