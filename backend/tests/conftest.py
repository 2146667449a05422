import pytest

from rfcoverage.schemas import Configuration, MaterialType, Room, Transmitter
from rfcoverage.services.rf_propagation import PropagationModel


@pytest.fixture
def config():
    """Default engine configuration"""
    return Configuration()


@pytest.fixture
def square_room():
    """4 x 4 m drywall room at the origin"""
    return Room(name="Office", polygon=[[0, 0], [4, 0], [4, 4], [0, 4]])


@pytest.fixture
def adjacent_rooms():
    """Two 4 x 4 m rooms sharing the wall at x = 4"""
    return [
        Room(name="West", polygon=[[0, 0], [4, 0], [4, 4], [0, 4]]),
        Room(name="East", polygon=[[4, 0], [8, 0], [8, 4], [4, 4]]),
    ]


@pytest.fixture
def concrete_room():
    return Room(name="Vault", polygon=[[0, 0], [4, 0], [4, 4], [0, 4]], material=MaterialType.CONCRETE)


@pytest.fixture
def center_ap():
    """Ceiling-mounted AP in the middle of the square room"""
    return Transmitter(position=(2.0, 2.5, 2.0), name="Center")


@pytest.fixture
def model(config, square_room):
    """Propagation model configured with the square room and no APs"""
    m = PropagationModel(config)
    m.configure_with_rooms([square_room])
    return m


@pytest.fixture
def model_with_ap(model):
    model.add_access_point((2.0, 2.5, 2.0), name="Center")
    return model
