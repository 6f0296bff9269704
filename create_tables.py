from advisory.db.session import engine
from advisory.db.base import Base
from advisory.models import *  # noqa: F401,F403 register models with Base

print("Creating database tables...")
Base.metadata.create_all(bind=engine)
print("✅ All tables created successfully!")
