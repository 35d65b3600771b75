from app.database import Base, get_engine
# Import every model so its table is registered on Base.metadata
from app.models.companies import Company
from app.models.profiles import Profile
from app.models.jobs import Job, SavedJob
from app.models.applications import Application


def create_tables(engine=None):
    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    return sorted(Base.metadata.tables)


if __name__ == "__main__":
    print("Creating tables...")
    created = create_tables()
    print(f"Tables created successfully: {', '.join(created)}")
