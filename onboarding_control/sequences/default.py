"""Default sequence — five-day member onboarding, used until a creator saves their own."""

SEQUENCE = {
    "id": "default",
    "name": "5-Day Onboarding",
    "steps": [
        {
            "day": 1,
            "subject": "Welcome to the Community!",
            "body": "Welcome aboard! We are excited to have you join our community. "
                    "Here is everything you need to get started...",
        },
        {
            "day": 2,
            "subject": "Getting Started Guide",
            "body": "Day 2 is all about setting you up for success. "
                    "Check out our getting started guide...",
        },
        {
            "day": 3,
            "subject": "Pro Tips & Tricks",
            "body": "Ready to level up? Here are some pro tips to help you get the most "
                    "out of your membership...",
        },
        {
            "day": 4,
            "subject": "Community Resources",
            "body": "Did you know about all the resources available to you? "
                    "Let us show you around...",
        },
        {
            "day": 5,
            "subject": "Your First Week Complete!",
            "body": "Congratulations on completing your first week! "
                    "Here is what is next on your journey...",
        },
    ],
}
