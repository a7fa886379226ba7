import os
import sys
from dotenv import load_dotenv

load_dotenv()

from cpops.db.engine import make_engine
from cpops.services import catalog

DEMO_TEAMS = [
    ("Alpha", "Field"),
    ("Bravo", "Field"),
    ("Medic 1", "Medical"),
    ("Quad", "Mobile"),
    ("PC", "Command"),
]

def seed_data(name="Demo event", date="2024-06-01"):
    engine = make_engine(os.environ["DATABASE_URL"])
    with engine.connect() as conn, conn.begin():
        event_id = catalog.create_event(conn, name=name, date=date)
        for team, team_type in DEMO_TEAMS:
            catalog.create_team(conn, event_id, team, team_type)
    print(f"Seeded event {event_id} with {len(DEMO_TEAMS)} teams")

if __name__ == '__main__':
    seed_data(*sys.argv[1:3])
