"""Starter service catalog used to build the embedding snapshot.

Each entry is embedded by ``build_snapshot.py`` from its title. Ids are
stable and never reused once retired; extend this list for your catalog.
"""

SERVICE_CATEGORIES = {
    "PLUMBING": "Plumbing",
    "FLOORING": "Flooring",
    "PAINTING": "Painting",
    "HEATING": "Heating",
    "LIGHTING": "Lighting",
    "ELECTRICAL": "Electrical",
    "LOCKS": "Locks Opening",
    "WINDOWS_DOORS": "Windows and Doors",
    "CLEANING": "Cleaning",
    "HVAC": "HVAC",
    "STRUCTURAL": "Structural",
    "APPLIANCE": "Appliance Repair",
    "GAS": "Gas Services",
}

SERVICE_CATALOG = [
    {
        "id": "1gang-switch",
        "title": "1-Gang Switch Installation",
        "description": "Install a single-gang switch for controlling lights or appliances in compact spaces.",
        "price": 85,
        "category": SERVICE_CATEGORIES["ELECTRICAL"],
    },
    {
        "id": "15-amp-outlet",
        "title": "15 Amp Outlet Installation",
        "description": "Add or upgrade 15-amp outlets for everyday electrical devices.",
        "price": 100,
        "category": SERVICE_CATEGORIES["ELECTRICAL"],
    },
    {
        "id": "circuit-breaker-fuse-troubleshooting",
        "title": "Circuit Breaker and Fuse Troubleshooting",
        "description": "Diagnose and resolve issues with circuit breakers or fuses to restore power safely.",
        "price": 100,
        "category": SERVICE_CATEGORIES["ELECTRICAL"],
    },
    {
        "id": "wi-fi-dimmer-google-alexa-homekit",
        "title": "Wi-Fi Dimmer Installation (Google, Alexa, HomeKit)",
        "description": "Control lighting with smart Wi-Fi dimmers compatible with popular voice assistants.",
        "price": 120,
        "category": SERVICE_CATEGORIES["ELECTRICAL"],
    },
    {
        "id": "half-pipe-repair",
        "title": '1/2" Pipe Emergency Repair',
        "description": "Emergency repairs on 1/2-inch pipes to address urgent plumbing issues.",
        "price": 150,
        "category": SERVICE_CATEGORIES["PLUMBING"],
    },
    {
        "id": "garbage-disposal",
        "title": "Garbage Disposal Installation",
        "description": "Install garbage disposals to manage kitchen waste.",
        "price": 120,
        "category": SERVICE_CATEGORIES["PLUMBING"],
    },
    {
        "id": "paint-interior-wall",
        "title": "Interior Wall Painting",
        "description": "Prepare and paint interior walls, two coats, priced per room.",
        "price": 140,
        "category": SERVICE_CATEGORIES["PAINTING"],
    },
    {
        "id": "color-wall-painting-two-coats",
        "title": "Color Wall Painting (Two Coats)",
        "description": "Apply two coats of color paint for a rich and long-lasting finish on interior walls.",
        "price": 150,
        "category": SERVICE_CATEGORIES["PAINTING"],
    },
    {
        "id": "bathroom-wall-painting-white",
        "title": "Bathroom Wall Painting (White)",
        "description": "Paint bathroom walls white for a bright, classic look.",
        "price": 130,
        "category": SERVICE_CATEGORIES["PAINTING"],
    },
    {
        "id": "ceiling-painting-seal-prime-paint",
        "title": "Ceiling Painting: Seal, Prime, and Paint",
        "description": "Seal, prime, and paint ceilings for a flawless finish.",
        "price": 180,
        "category": SERVICE_CATEGORIES["PAINTING"],
    },
    {
        "id": "one-coat-refresh-ceiling-painting",
        "title": "One Coat Refresh Ceiling Painting",
        "description": "Apply a single coat of paint to refresh ceilings.",
        "price": 150,
        "category": SERVICE_CATEGORIES["PAINTING"],
    },
    {
        "id": "baseboard-painting",
        "title": "Baseboard Painting",
        "description": "Paint baseboards to refresh and brighten the look of a room.",
        "price": 80,
        "category": SERVICE_CATEGORIES["PAINTING"],
    },
    {
        "id": "exterior-door",
        "title": "Exterior Door Installation",
        "description": "Install exterior doors to improve security, insulation, and curb appeal.",
        "price": 200,
        "category": SERVICE_CATEGORIES["WINDOWS_DOORS"],
    },
    {
        "id": "pocket-door",
        "title": "Pocket Door Installation",
        "description": "Install pocket doors to maximize usable space.",
        "price": 180,
        "category": SERVICE_CATEGORIES["WINDOWS_DOORS"],
    },
    {
        "id": "sliding-shower-door",
        "title": "Sliding Shower Door Installation",
        "description": "Install sliding shower doors for a space-saving bathroom.",
        "price": 200,
        "category": SERVICE_CATEGORIES["APPLIANCE"],
    },
    {
        "id": "concrete-patching-up-to-14-sq-ft",
        "title": "Concrete Patching (up to 14 sq. ft.)",
        "description": "Patch concrete surfaces up to 14 square feet to repair cracks or damage.",
        "price": 100,
        "category": SERVICE_CATEGORIES["STRUCTURAL"],
    },
    {
        "id": "leveling-cement",
        "title": "Leveling with Cement",
        "description": "Level surfaces with cement to create a stable, even base.",
        "price": 150,
        "category": SERVICE_CATEGORIES["STRUCTURAL"],
    },
    {
        "id": "vinyl-covering",
        "title": "Vinyl Covering Installation",
        "description": "Install durable, water-resistant vinyl coverings.",
        "price": 150,
        "category": SERVICE_CATEGORIES["STRUCTURAL"],
    },
    {
        "id": "wall-veneer-panels",
        "title": "Wall Veneer Panels Installation",
        "description": "Install wall veneer panels to add texture and style to walls.",
        "price": 180,
        "category": SERVICE_CATEGORIES["STRUCTURAL"],
    },
]

CATALOG_VERSION = "catalog-v1"
