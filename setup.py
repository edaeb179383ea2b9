from setuptools import setup
from setuptools import find_packages


with open("README.md", "r") as fh:
    long_description = fh.read()


setup(
      name='mixhmm',
      version='0.1.0',
      description='Mixture hidden Markov models for multichannel categorical sequences',
      long_description=long_description,
      long_description_content_type="text/markdown",
      url='NA',
      author='modeling team',
      classifiers=["Development Status :: 4 - Beta",
                   'Intended Audience :: Science/Research',
                   'Intended Audience :: Developers',
                   'Programming Language :: Python',
                   'Programming Language :: Python :: 3',
                   'Topic :: Software Development',
                   'Topic :: Scientific/Engineering',
                   'Operating System :: Microsoft :: Windows',
                   'Operating System :: POSIX',
                   'Operating System :: Unix',
                   'Operating System :: MacOS'],
      packages=find_packages(exclude=['tests']),
      install_requires=['numpy >= 1.17',
                        'scipy >= 1.5.2',
                        'numba >= 0.50',
                        'matplotlib >= 1.5.1',
                        'scikit-learn >= 0.23.2',
                        'joblib >= 0.17.0',
                       ],
      extras_require={'test': ['pytest',
                               'hypothesis',
                               'autograd >= 1.3',
                              ]},
      python_requires='>=3.7',
      zip_safe=False,
)
