"""Demo merchant catalog (Surabaya / Malang) served when no merchant API is configured.

`valid_days` is relative to the moment the catalog is read.
"""

SAMPLE_DEALS: list[dict] = [
    {
        "id": "deal-001",
        "merchant_id": "merchant-001",
        "merchant_name": "Warung Bu Rudi",
        "title": "Sate Ayam Special Set Menu",
        "description": "Chicken satay set with rice, fresh vegetables and iced tea for two",
        "category": "dining",
        "original_price": 75000,
        "discounted_price": 55000,
        "discount_percentage": 27,
        "location": "Surabaya",
        "coordinates": {"lat": -7.2575, "lng": 112.7521},
        "valid_days": 7,
        "terms": ["Dine-in only", "Cannot be combined with other promotions"],
        "rating": 4.7,
        "reviews": 234,
        "tags": ["Traditional", "Family", "Local Favorite"],
        "budget_category": "budget",
        "average_spend_per_hour": 25000,
    },
    {
        "id": "deal-002",
        "merchant_id": "merchant-002",
        "merchant_name": "Kedai Kopi Suroboyo",
        "title": "Brunch Package + Free Coffee",
        "description": "Brunch with single-origin coffee and artisan pastry",
        "category": "dining",
        "original_price": 85000,
        "discounted_price": 65000,
        "discount_percentage": 24,
        "location": "Surabaya",
        "coordinates": {"lat": -7.2653, "lng": 112.7427},
        "valid_days": 5,
        "terms": ["Weekdays 07:00-11:00", "Minimum 2 guests"],
        "rating": 4.8,
        "reviews": 189,
        "tags": ["Coffee", "Brunch", "Artisan"],
        "budget_category": "moderate",
        "average_spend_per_hour": 40000,
    },
    {
        "id": "deal-003",
        "merchant_id": "merchant-003",
        "merchant_name": "Rumah Bakso Malang",
        "title": "Family Bakso Package",
        "description": "Meatball soup package for four with dumplings and fritters",
        "category": "dining",
        "original_price": 120000,
        "discounted_price": 85000,
        "discount_percentage": 29,
        "location": "Malang",
        "coordinates": {"lat": -7.9667, "lng": 112.6333},
        "valid_days": 10,
        "terms": ["Weekends only", "Tax and service included"],
        "rating": 4.6,
        "reviews": 312,
        "tags": ["Family", "Traditional", "Complete Meal"],
        "budget_category": "budget",
        "average_spend_per_hour": 30000,
    },
    {
        "id": "deal-004",
        "merchant_id": "merchant-004",
        "merchant_name": "Hotel Majapahit Budget",
        "title": "Standard Room 2 Nights",
        "description": "Standard room with breakfast for two, two nights",
        "category": "accommodation",
        "original_price": 400000,
        "discounted_price": 280000,
        "discount_percentage": 30,
        "location": "Surabaya",
        "coordinates": {"lat": -7.2633, "lng": 112.7398},
        "valid_days": 14,
        "terms": ["Breakfast included", "Free cancellation 24h before check-in"],
        "rating": 4.0,
        "reviews": 156,
        "tags": ["Budget Hotel", "City Center", "Breakfast Included"],
        "budget_category": "budget",
    },
    {
        "id": "deal-005",
        "merchant_id": "merchant-005",
        "merchant_name": "Blue Bird Taxi",
        "title": "Airport Transfer Package",
        "description": "Air-conditioned transfer from Juanda Airport to any Surabaya hotel",
        "category": "transportation",
        "original_price": 150000,
        "discounted_price": 110000,
        "discount_percentage": 27,
        "location": "Surabaya",
        "coordinates": {"lat": -7.3797, "lng": 112.7868},
        "valid_days": 30,
        "terms": ["24/7 service", "Professional driver"],
        "rating": 4.5,
        "reviews": 892,
        "tags": ["Airport Transfer", "Safe", "Reliable"],
        "budget_category": "moderate",
    },
]
